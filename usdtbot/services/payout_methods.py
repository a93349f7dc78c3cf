"""Справочник способов выплаты: название -> реквизиты для расчетов"""

import logging
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class PayoutMethodDirectory:
    def __init__(self, methods: Optional[Mapping[str, str]] = None):
        self._methods: Dict[str, str] = dict(methods or {})

    def list(self) -> List[Tuple[str, str]]:
        return sorted(self._methods.items(), key=lambda item: item[0].lower())

    def get(self, name: str) -> Optional[str]:
        return self._methods.get(name)

    def set(self, name: str, details: str) -> None:
        name = name.strip()
        if not name:
            raise ValueError("Payout method name must not be empty")
        self._methods[name] = details.strip()
        logger.info(f"Payout method saved: {name}")
