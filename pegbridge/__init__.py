from pegbridge.config import BridgeConfig, load_config
from pegbridge.errors import BridgeError, ChainFault, EmptyPool, InvalidOffset, PricingFault
from pegbridge.pricing import convert_to_token_amount, offset_multiplier, resolve_reserves
from pegbridge.settlement import PayOrder, PayResult, SettlementPipeline

__all__ = [
    "BridgeConfig",
    "load_config",
    "BridgeError",
    "ChainFault",
    "EmptyPool",
    "InvalidOffset",
    "PricingFault",
    "convert_to_token_amount",
    "offset_multiplier",
    "resolve_reserves",
    "PayOrder",
    "PayResult",
    "SettlementPipeline",
]
