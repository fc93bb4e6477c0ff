# usage_meter/demo/seed_demo_data.py

from datetime import datetime, timedelta
from typing import List

from usage_meter.api import UsageAPI
from usage_meter.storage.models import Account


def seed_demo_data(api: UsageAPI, now: datetime) -> List[Account]:
    """Create a few demo accounts with usage spread over recent days."""
    openai = api.create_account(
        title="OpenAI API",
        platform="OpenAI",
        reset_policy="monthly",
        usage_type="api_calls",
        usage_limit=1000,
        tags=["ai", "work"]
    )
    github = api.create_account(
        title="GitHub Actions",
        platform="GitHub",
        reset_policy="daily",
        usage_type="custom",
        usage_limit=20
    )
    storage = api.create_account(
        title="Photo backup",
        platform="Google",
        reset_policy="never",
        usage_type="storage"
    )

    api.log_usage(openai.id, 120, "batch summarisation", timestamp=now - timedelta(days=2))
    api.log_usage(openai.id, 45, "chat", timestamp=now - timedelta(hours=3))
    api.log_usage(github.id, 6, "ci runs", timestamp=now - timedelta(minutes=30))
    api.log_usage(github.id, 25, "release build", timestamp=now - timedelta(days=1))  # spike
    api.log_usage(storage.id, 3, "holiday photos", timestamp=now - timedelta(days=40))

    return api.list_accounts()
