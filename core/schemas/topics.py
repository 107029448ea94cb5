# CENTRALIZED stream names, consumer groups and partition layout
# NO wildcard subscriptions - route by stream name only

from typing import Dict, Any, List

from core.config.settings import Settings


class TopicNames:
    """Centralized stream name definitions"""

    TRADES = "trades"
    TRADE_CONFIRMATIONS = "tradeConfirmations"

    DLQ_SUFFIX = ".dlq"

    @classmethod
    def get_dlq_topic(cls, original_topic: str) -> str:
        """Get DLQ topic for any topic"""
        return f"{original_topic}{cls.DLQ_SUFFIX}"

    @classmethod
    def is_dlq_topic(cls, topic: str) -> bool:
        return topic.endswith(cls.DLQ_SUFFIX)

    @classmethod
    def all_topics(cls) -> List[str]:
        return [cls.TRADES, cls.TRADE_CONFIRMATIONS]


class ConsumerGroups:
    """Consumer group suffixes, prefixed with RedpandaSettings.group_id_prefix"""
    TRADE_EXECUTOR = "trade_executor"
    CONFIRMATION_SINK = "confirmation_sink"


class PartitioningKeys:
    """Document partition keys for ordering guarantees"""

    @staticmethod
    def trade_key(account: int) -> str:
        """Partition by account so every trade of an account stays in order"""
        return str(account)


class TopicConfig:
    """Topic layout derived from settings, never hard-coded.

    The trades partition count comes from the same setting the requestor's
    selector uses, so producer routing and broker layout cannot drift apart
    through configuration alone.
    """

    DLQ_PARTITIONS = 1

    @staticmethod
    def configs(settings: Settings) -> Dict[str, Dict[str, Any]]:
        partitioning = settings.partitioning
        configs = {
            TopicNames.TRADES: {
                "partitions": partitioning.partition_count,
                "replication_factor": 1,
                "config": {"retention.ms": "86400000"}  # 1 day
            },
            TopicNames.TRADE_CONFIRMATIONS: {
                "partitions": partitioning.confirmation_partition_count,
                "replication_factor": 1,
                "config": {"retention.ms": "86400000"}  # 1 day
            },
        }
        for topic in list(configs):
            configs[TopicNames.get_dlq_topic(topic)] = {
                "partitions": TopicConfig.DLQ_PARTITIONS,
                "replication_factor": 1,
                "config": {"retention.ms": "604800000"}  # 7 days
            }
        return configs

    @staticmethod
    def partition_counts(settings: Settings) -> Dict[str, int]:
        return {topic: cfg["partitions"] for topic, cfg in TopicConfig.configs(settings).items()}
