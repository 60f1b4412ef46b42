# Unit-of-measure conversion registry for the production engine.
# Version: 1.0.0
# Converts stage quantities between units through explicit (from, to) rules.

import logging
from dataclasses import dataclass
from typing import Literal

from .constants import DEFAULT_CONSTANTS, ConversionOperation, ConversionRule, EngineConstants
from .data_loader import optional_positive


logger = logging.getLogger(__name__)

ConversionStatus = Literal["identity", "converted", "unguarded", "unknown"]


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting a quantity between two units.

    Attributes:
        value: Converted quantity (the input, unchanged, unless status is "converted").
        from_uom: Canonical source unit.
        to_uom: Canonical target unit.
        status: identity (same unit), converted (rule applied), unguarded (rule
            needs a number-up that is missing), unknown (no rule registered).
    """
    value: float
    from_uom: str
    to_uom: str
    status: ConversionStatus

    @property
    def is_known(self) -> bool:
        """Check if the value is trustworthy in the target unit."""
        return self.status in ("identity", "converted")


class ConversionRegistry:
    """Conversion rules keyed by (from_uom, to_uom).

    Unit tokens are normalized through the engine's alias table before lookup,
    so ``sht`` and ``sheet`` both resolve to ``sheets``.
    """

    def __init__(
        self,
        rules: tuple[ConversionRule, ...] = (),
        constants: EngineConstants = DEFAULT_CONSTANTS
    ) -> None:
        self._constants = constants
        self._rules: dict[tuple[str, str], ConversionOperation] = {}
        for rule in rules:
            self.register(rule.from_uom, rule.to_uom, rule.operation)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, pair: tuple[str, str]) -> bool:
        from_uom, to_uom = pair
        return (self.normalize(from_uom), self.normalize(to_uom)) in self._rules

    def normalize(self, token: str | None) -> str:
        """Canonical form of a unit token."""
        return self._constants.canonical_uom(token)

    def register(self, from_uom: str, to_uom: str, operation: ConversionOperation) -> None:
        """Register (or replace) a conversion rule.

        Args:
            from_uom: Source unit token.
            to_uom: Target unit token.
            operation: identity, multiply_number_up or divide_number_up.
        """
        self._rules[(self.normalize(from_uom), self.normalize(to_uom))] = operation

    def lookup(self, from_uom: str | None, to_uom: str | None) -> ConversionOperation | None:
        """Find the rule for a unit pair, or None if none is registered."""
        return self._rules.get((self.normalize(from_uom), self.normalize(to_uom)))

    def convert(
        self,
        value: float,
        from_uom: str | None,
        to_uom: str | None,
        number_up: float | None = None
    ) -> ConversionResult:
        """Convert a quantity between units.

        Unknown pairings and number-up rules without a positive number-up pass
        the value through unchanged; the result status tells callers which.

        Args:
            value: Quantity in ``from_uom``.
            from_uom: Source unit token.
            to_uom: Target unit token.
            number_up: Units per sheet, for sheet/carton rules.

        Returns:
            ConversionResult with the converted value and its status.
        """
        source = self.normalize(from_uom)
        target = self.normalize(to_uom)

        if source == target:
            return ConversionResult(value, source, target, "identity")

        operation = self._rules.get((source, target))
        if operation is None:
            logger.warning("No UOM conversion from '%s' to '%s'; passing %s through", source, target, value)
            return ConversionResult(value, source, target, "unknown")

        if operation == "identity":
            return ConversionResult(value, source, target, "converted")

        n_up = optional_positive(number_up)
        if n_up is None:
            logger.warning(
                "Conversion '%s' -> '%s' needs a positive numberUp; passing %s through", source, target, value
            )
            return ConversionResult(value, source, target, "unguarded")

        if operation == "multiply_number_up":
            return ConversionResult(value * n_up, source, target, "converted")
        return ConversionResult(value / n_up, source, target, "converted")


def default_registry(constants: EngineConstants = DEFAULT_CONSTANTS) -> ConversionRegistry:
    """Build the registry from the rules configured on the engine constants."""
    return ConversionRegistry(constants.conversions, constants)


def normalize_uom(token: str | None, constants: EngineConstants = DEFAULT_CONSTANTS) -> str:
    """Canonical form of a unit token under the configured aliases."""
    return constants.canonical_uom(token)
