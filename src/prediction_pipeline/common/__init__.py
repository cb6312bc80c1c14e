"""Broker infrastructure shared by feeders and the event log worker.

Import classes directly from submodules to avoid loading aiokafka at
package import time:
    from prediction_pipeline.common.consumer import BaseKafkaConsumer
    from prediction_pipeline.common.producer import BaseKafkaProducer
    from prediction_pipeline.common.publisher import EventPublisher
"""

__all__: list[str] = []
