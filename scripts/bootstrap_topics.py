"""
Create the pipeline topics with partition counts taken from settings.

The trades partition count is the same value the requestor's selector
and the executor's assignment read, so bootstrap and routing agree.
Existing topics are left alone; a partition count that differs from
configuration is reported, since the bus refuses to start against it.

Environment controls:
- ENVIRONMENT or Settings.environment: development|testing|production
- REDPANDA_BROKER_COUNT: int (optional, default 1)
"""

import os
import asyncio
from typing import Dict, List, Optional

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from core.schemas.topics import TopicConfig
from core.config.settings import Settings, Environment


def _effective_topic_config(config: dict, env: Environment, broker_count: int) -> dict:
    """Compute environment-aware topic config; partition counts are never overlaid."""
    base_rf = int(config.get("replication_factor", 1))

    # Replication overlay: prefer RF>=3 in production, capped by broker_count
    if env == Environment.PRODUCTION:
        target_rf = 3 if broker_count >= 3 else broker_count
    else:
        target_rf = min(base_rf, broker_count) if broker_count > 0 else base_rf

    return {
        "partitions": int(config.get("partitions", 1)),
        "replication_factor": max(1, target_rf),
        "config": config.get("config", {}),
    }


async def _existing_partition_counts(admin_client: AIOKafkaAdminClient, topics: List[str]) -> Dict[str, int]:
    if not topics:
        return {}
    described = await admin_client.describe_topics(topics)
    return {t["topic"]: len(t.get("partitions", [])) for t in described}


async def create_topics(settings: Optional[Settings] = None) -> Dict[str, List[str]]:
    """Create missing topics; returns the created, existing and mismatched topic names"""
    settings = settings or Settings()
    admin_client = AIOKafkaAdminClient(
        bootstrap_servers=settings.redpanda.bootstrap_servers,
        client_id=f"{settings.redpanda.client_id}-admin"
    )

    summary: Dict[str, List[str]] = {"created": [], "existing": [], "mismatched": []}
    try:
        await admin_client.start()
        print("Connected to Redpanda admin API")

        broker_count = int(os.getenv("REDPANDA_BROKER_COUNT", "1"))
        print(f"Environment: {settings.environment.value}; brokers={broker_count}")

        existing_topics = set(await admin_client.list_topics())
        configs = TopicConfig.configs(settings)

        topics_to_create = []
        for topic_name, config in configs.items():
            eff = _effective_topic_config(config, settings.environment, broker_count)
            if topic_name in existing_topics:
                summary["existing"].append(topic_name)
                continue
            topics_to_create.append(NewTopic(
                name=topic_name,
                num_partitions=eff["partitions"],
                replication_factor=eff["replication_factor"],
                topic_configs=eff["config"],
            ))
            print(f"Will create topic: {topic_name} with {eff['partitions']} partitions, RF={eff['replication_factor']}")

        actual = await _existing_partition_counts(admin_client, summary["existing"])
        for topic_name in summary["existing"]:
            expected = configs[topic_name]["partitions"]
            if actual.get(topic_name, expected) != expected:
                summary["mismatched"].append(topic_name)
                print(f"Topic {topic_name} exists with {actual[topic_name]} partitions, configured {expected}")
            else:
                print(f"Topic already exists: {topic_name}")

        if topics_to_create:
            await admin_client.create_topics(topics_to_create)
            summary["created"] = [t.name for t in topics_to_create]
            print(f"Successfully created {len(topics_to_create)} topics")
        else:
            print("All topics already exist")
    finally:
        await admin_client.close()

    return summary


async def main(settings: Optional[Settings] = None) -> Dict[str, List[str]]:
    """Bootstrap topics for the trade partitioning pipeline"""
    print("Bootstrapping trade partitioning topics...")
    summary = await create_topics(settings)
    print("Topic bootstrap complete!")
    return summary


if __name__ == "__main__":
    asyncio.run(main())
