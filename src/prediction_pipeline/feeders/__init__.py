"""Feeder scheduling: periodic fetch-publish-store cycles."""

from prediction_pipeline.feeders.controller import CycleResult, FeederController, Provider

__all__ = ["CycleResult", "FeederController", "Provider"]
