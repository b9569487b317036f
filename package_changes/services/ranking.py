"""Pluggable strategies for ordering package tiers within a product."""

from __future__ import annotations

import logging
import re
from enum import Enum
from importlib import import_module
from typing import Mapping, Sequence

from package_changes.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

TRAILING_TIER = re.compile(r"(\d+)(?=\D*$)")
WORD = re.compile(r"[a-z]+")


class RankOrder(str, Enum):
    """Ordering of package A relative to package B."""

    LESS = "less"
    EQUAL = "equal"
    GREATER = "greater"
    UNKNOWN = "unknown"


def _compare(left: int, right: int) -> RankOrder:
    if left < right:
        return RankOrder.LESS
    if left > right:
        return RankOrder.GREATER
    return RankOrder.EQUAL


def _normalize(name: str) -> str:
    return " ".join(name.lower().split())


class BasePackageRankResolver:
    """Base contract for rank resolvers.

    ``rank(product_code, a, b)`` answers how package ``a`` orders against
    package ``b``: LESS means moving from ``a`` to ``b`` is an upgrade.
    Resolvers return UNKNOWN whenever they cannot decide; callers must never
    coerce UNKNOWN into an upgrade or downgrade.
    """

    name = "base"

    def rank(self, product_code: str, package_a: str, package_b: str) -> RankOrder:
        raise NotImplementedError


class TierNumberRankResolver(BasePackageRankResolver):
    """Compares the last integer embedded in each package name.

    Both names must belong to the same family: once the tier number is masked
    out, the remaining text has to match (``P4``/``P5`` or ``ExpIQ X2``/``ExpIQ X3``).
    """

    name = "tier_number"

    def rank(self, product_code: str, package_a: str, package_b: str) -> RankOrder:
        if _normalize(package_a) == _normalize(package_b):
            return RankOrder.EQUAL
        tier_a = self._split(package_a)
        tier_b = self._split(package_b)
        if tier_a is None or tier_b is None:
            return RankOrder.UNKNOWN
        stem_a, number_a = tier_a
        stem_b, number_b = tier_b
        if stem_a != stem_b:
            return RankOrder.UNKNOWN
        return _compare(number_a, number_b)

    @staticmethod
    def _split(package: str) -> tuple[str, int] | None:
        match = TRAILING_TIER.search(package)
        if not match:
            return None
        stem = f"{package[: match.start()]}#{package[match.end() :]}"
        return _normalize(stem), int(match.group(1))


class OrdinalRankResolver(BasePackageRankResolver):
    """Ranks package names by the position of a known tier word on a ladder."""

    name = "ordinal"

    def __init__(self, ladder: Sequence[str]) -> None:
        self._ladder = [_normalize(term) for term in ladder if term and term.strip()]

    def rank(self, product_code: str, package_a: str, package_b: str) -> RankOrder:
        if _normalize(package_a) == _normalize(package_b):
            return RankOrder.EQUAL
        position_a = self._position(package_a)
        position_b = self._position(package_b)
        if position_a is None or position_b is None:
            return RankOrder.UNKNOWN
        return _compare(position_a, position_b)

    def _position(self, package: str) -> int | None:
        normalized = _normalize(package)
        if normalized in self._ladder:
            return self._ladder.index(normalized)
        words = set(WORD.findall(normalized))
        hits = {idx for idx, term in enumerate(self._ladder) if term in words}
        # Names mentioning two ladder terms ("Basic Plus") are ambiguous.
        if len(hits) != 1:
            return None
        return hits.pop()


class ProductFamilyRankResolver(BasePackageRankResolver):
    """Routes a product code to the resolver registered for its family."""

    name = "product_family"

    def __init__(
        self,
        families: Mapping[str, BasePackageRankResolver],
        default: BasePackageRankResolver | None = None,
    ) -> None:
        self._families = dict(families)
        self._default = default

    def rank(self, product_code: str, package_a: str, package_b: str) -> RankOrder:
        resolver = self._resolver_for(product_code)
        if resolver is None:
            return RankOrder.UNKNOWN
        return resolver.rank(product_code, package_a, package_b)

    def _resolver_for(self, product_code: str) -> BasePackageRankResolver | None:
        if product_code in self._families:
            return self._families[product_code]
        prefixes = [prefix for prefix in self._families if product_code.startswith(prefix)]
        if prefixes:
            return self._families[max(prefixes, key=len)]
        return self._default


class CompositeRankResolver(BasePackageRankResolver):
    """Asks each resolver in turn and returns the first definite answer."""

    name = "composite"

    def __init__(self, resolvers: Sequence[BasePackageRankResolver]) -> None:
        self._resolvers = list(resolvers)

    def rank(self, product_code: str, package_a: str, package_b: str) -> RankOrder:
        for resolver in self._resolvers:
            order = resolver.rank(product_code, package_a, package_b)
            if order != RankOrder.UNKNOWN:
                return order
        return RankOrder.UNKNOWN


def load_external_resolvers(module_paths: Sequence[str]) -> list[BasePackageRankResolver]:
    loaded: list[BasePackageRankResolver] = []
    for path in module_paths:
        if not path:
            continue
        try:
            module = import_module(path)
        except ImportError:
            logger.warning("Rank resolver module %s could not be imported", path)
            continue
        factory = getattr(module, "register_rank_resolvers", None) or getattr(module, "get_rank_resolvers", None)
        if not callable(factory):
            continue
        resolvers = factory()
        if isinstance(resolvers, BasePackageRankResolver):
            loaded.append(resolvers)
        elif isinstance(resolvers, (list, tuple)):
            loaded.extend(res for res in resolvers if isinstance(res, BasePackageRankResolver))
    return loaded


def build_rank_resolver(config: Settings | None = None) -> BasePackageRankResolver:
    """Assemble the default resolver chain from settings.

    Order: externally registered resolvers, per-product ladders, tier numbers,
    then the generic ladder of edition words.
    """

    config = config or default_settings
    chain: list[BasePackageRankResolver] = load_external_resolvers(config.rank_resolver_module_paths)
    if config.package_tier_ladders:
        families = {code: OrdinalRankResolver(ladder) for code, ladder in config.package_tier_ladders.items()}
        chain.append(ProductFamilyRankResolver(families))
    chain.append(TierNumberRankResolver())
    if config.default_tier_ladder:
        chain.append(OrdinalRankResolver(config.default_tier_ladder))
    return CompositeRankResolver(chain)
