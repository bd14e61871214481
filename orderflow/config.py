"""Runtime configuration for the ordering core."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from decimal import Decimal

from dotenv import load_dotenv

ENV_PREFIX = "ORDERFLOW_"


@dataclass(frozen=True, slots=True)
class Settings:
    # Stock assumed for a SKU the ledger has never seen.
    default_stock_seed: int = 10
    max_line_quantity: int = 10

    tax_rate: Decimal = Decimal("0.05")
    free_delivery_threshold: Decimal = Decimal("500")
    reduced_fee_threshold: Decimal = Decimal("200")
    reduced_delivery_fee: Decimal = Decimal("25")
    standard_delivery_fee: Decimal = Decimal("40")

    # Seconds per stage for time-driven order progression.
    status_interval: float = 15.0

    retry_attempts: int = 3
    retry_backoff: float = 0.5

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        """Build settings from ORDERFLOW_* variables (and a .env file when present).

        Unset variables keep their defaults, e.g. ORDERFLOW_DEFAULT_STOCK_SEED=0.
        """
        if dotenv:
            load_dotenv()

        overrides = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            default = f.default
            try:
                overrides[f.name] = type(default)(raw)
            except (ValueError, ArithmeticError) as exc:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from exc
        return cls(**overrides)
