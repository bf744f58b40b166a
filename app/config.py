from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_GRAPH_URL = "https://graph.facebook.com"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite:////tmp/intrend_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    stripe_secret_key: str | None = Field(None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = Field(None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_publishable_key: str | None = Field(
        None, alias="NEXT_PUBLIC_STRIPE_PUBLISHABLE_KEY"
    )
    stripe_basic_monthly_price_id: str | None = Field(
        None, alias="STRIPE_PER_ACCOUNT_BASIC_MONTHLY_PRICE_ID"
    )
    stripe_basic_annual_price_id: str | None = Field(
        None, alias="STRIPE_PER_ACCOUNT_BASIC_ANNUAL_PRICE_ID"
    )
    stripe_pro_monthly_price_id: str | None = Field(
        None, alias="STRIPE_PER_ACCOUNT_PRO_MONTHLY_PRICE_ID"
    )
    stripe_pro_annual_price_id: str | None = Field(
        None, alias="STRIPE_PER_ACCOUNT_PRO_ANNUAL_PRICE_ID"
    )
    price_per_account: float = Field(10.0, alias="PRICE_PER_ACCOUNT")
    subscription_batch_concurrency: int = Field(
        4,
        alias="SUBSCRIPTION_BATCH_CONCURRENCY",
        description="Parallel Stripe calls when subscribing several ad accounts",
    )

    facebook_graph_url: str = Field(DEFAULT_GRAPH_URL, alias="FACEBOOK_GRAPH_URL")
    facebook_graph_version: str = Field("v23.0", alias="FACEBOOK_GRAPH_VERSION")
    facebook_timeout: float = Field(15.0, alias="FACEBOOK_TIMEOUT")
    facebook_app_id: str | None = Field(None, alias="NEXT_PUBLIC_FACEBOOK_APP_ID")

    n8n_webhook_url: str | None = Field(None, alias="N8N_WEBHOOK_URL")
    n8n_timeout: float = Field(30.0, alias="N8N_TIMEOUT")

    image_proxy_timeout: float = Field(15.0, alias="IMAGE_PROXY_TIMEOUT")

    base_url: str = Field("http://localhost:3000", alias="NEXT_PUBLIC_BASE_URL")

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
    )
