"""Pydantic v2 configuration schema with strict validation."""

from pydantic import BaseModel, Field, field_validator

from polyswap.config.defaults import (
    COMPOSABLE_COW,
    COW_VAULT_RELAYER,
    EXTENSIBLE_FALLBACK_HANDLER,
    MULTISEND_CALL_ONLY,
    POLYSWAP_HANDLER,
    VALUE_FACTORY,
    ZERO_BYTES32,
)


class ChainConfig(BaseModel):
    model_config = {"extra": "forbid"}

    rpc_url: str = "https://polygon-rpc.com"
    chain_id: int = Field(default=137, ge=1)
    rpc_timeout_seconds: float = Field(default=30.0, gt=0.0)


class ContractsConfig(BaseModel):
    model_config = {"extra": "forbid"}

    composable_cow: str = COMPOSABLE_COW
    polyswap_handler: str = POLYSWAP_HANDLER
    fallback_handler: str = EXTENSIBLE_FALLBACK_HANDLER
    spender: str = COW_VAULT_RELAYER  # CoW vault relayer pulls the sell token
    multisend_call_only: str = MULTISEND_CALL_ONLY
    value_factory: str = VALUE_FACTORY
    app_data: str = ZERO_BYTES32

    @field_validator(
        "composable_cow",
        "polyswap_handler",
        "fallback_handler",
        "spender",
        "multisend_call_only",
        "value_factory",
    )
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not (v.startswith("0x") and len(v) == 42):
            raise ValueError(f"not an address: {v}")
        int(v, 16)
        return v

    @field_validator("app_data")
    @classmethod
    def _check_bytes32(cls, v: str) -> str:
        if not (v.startswith("0x") and len(v) == 66):
            raise ValueError(f"not a bytes32 value: {v}")
        int(v, 16)
        return v


class PolymarketConfig(BaseModel):
    model_config = {"extra": "forbid"}

    clob_url: str = "https://clob.polymarket.com"
    order_size: float = Field(default=5.0, gt=0.0)
    signature_type: int = Field(default=0, ge=0, le=2)
    funder: str = ""


class SignatureConfig(BaseModel):
    model_config = {"extra": "forbid"}

    max_age_seconds: int = Field(default=300, ge=1)
    future_tolerance_seconds: int = Field(default=60, ge=0)


class WorkflowConfig(BaseModel):
    model_config = {"extra": "forbid"}

    order_confirmation_timeout_seconds: float = Field(default=180.0, gt=0.0)
    setup_confirmation_timeout_seconds: float = Field(default=60.0, gt=0.0)
    cancel_confirmation_timeout_seconds: float = Field(default=60.0, gt=0.0)
    propagation_delay_seconds: float = Field(default=5.0, ge=5.0, le=8.0)
    poll_interval_seconds: float = Field(default=2.0, gt=0.0)
    max_setup_rounds: int = Field(default=3, ge=1)


class PolyswapConfig(BaseModel):
    model_config = {"extra": "forbid"}

    chain: ChainConfig = ChainConfig()
    contracts: ContractsConfig = ContractsConfig()
    polymarket: PolymarketConfig = PolymarketConfig()
    signature: SignatureConfig = SignatureConfig()
    workflow: WorkflowConfig = WorkflowConfig()
