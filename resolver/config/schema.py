"""Pydantic v2 configuration schema with strict validation."""

from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class ObservationMode(StrEnum):
    SUBSCRIPTION = "subscription"
    POLLING = "polling"


class ChainConfig(BaseModel):
    model_config = {"extra": "forbid"}

    rpc_url: str = "http://localhost:8545"
    contract_address: str = ""
    rpc_timeout_seconds: float = Field(default=15.0, gt=0.0)


class CoordinatorConfig(BaseModel):
    model_config = {"extra": "forbid"}

    base_url: str = "http://localhost:5001/api"
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    register_timeout_seconds: float = Field(default=10.0, gt=0.0)


class PaymentsConfig(BaseModel):
    model_config = {"extra": "forbid"}

    base_url: str = "https://api.razorpay.com/v1"
    account_number: str = ""
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    currency: str = "INR"
    mode: str = "UPI"
    contact_name: str = "Order Recipient"
    contact_email: str = "order@yourapp.com"
    contact_phone: str = "9999999999"
    narration: str = Field(default="Order Payment", max_length=30)


class ObserverConfig(BaseModel):
    model_config = {"extra": "forbid"}

    mode: ObservationMode = ObservationMode.POLLING
    poll_interval_seconds: float = Field(default=15.0, gt=0.0)
    max_block_span: int = Field(default=100, ge=1)
    filter_poll_interval_seconds: float = Field(default=2.0, gt=0.0)
    health_check_interval_seconds: float = Field(default=60.0, gt=0.0)
    staleness_threshold_blocks: int = Field(default=50, ge=1)
    fallback_error_threshold: int = Field(default=3, ge=1)
    recreate_grace_seconds: float = Field(default=2.0, ge=0.0)
    recovery_retries: int = Field(default=2, ge=0)
    recovery_retry_delay_seconds: float = Field(default=2.0, ge=0.0)
    reconnect_retry_seconds: float = Field(default=10.0, ge=0.0)


class AuctionConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = True
    channel_url: str = "http://localhost:5001"
    participation_probability: float = Field(default=0.7, ge=0.0, le=1.0)
    min_delay_ms: int = Field(default=500, ge=0)
    max_delay_ms: int = Field(default=4500, ge=0)
    progress_log_step: float = Field(default=20.0, gt=0.0, le=100.0)

    @model_validator(mode="after")
    def _delay_bounds(self) -> "AuctionConfig":
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError("min_delay_ms must not exceed max_delay_ms")
        return self


class CallbackConfig(BaseModel):
    model_config = {"extra": "forbid"}

    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)
    public_url: str = ""
    settlement_delay_seconds: float = Field(default=1.0, ge=0.0)

    @property
    def callback_url(self) -> str:
        base = self.public_url or f"http://localhost:{self.port}"
        return f"{base.rstrip('/')}/callback/order-accepted"


class ResolverConfig(BaseModel):
    model_config = {"extra": "forbid"}

    chain: ChainConfig = ChainConfig()
    coordinator: CoordinatorConfig = CoordinatorConfig()
    payments: PaymentsConfig = PaymentsConfig()
    observer: ObserverConfig = ObserverConfig()
    auction: AuctionConfig = AuctionConfig()
    callback: CallbackConfig = CallbackConfig()
