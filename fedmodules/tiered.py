"""Containers keyed by amount tier."""

from __future__ import annotations

from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    Iterator,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .amount import Amount

T = TypeVar("T")
U = TypeVar("U")

_Source = Union[Mapping[Amount, Any], Iterable[Tuple[Amount, Any]], None]


class InvalidAmountTierError(Exception):
    """Raised when an amount tier is not known."""

    def __init__(self, amount: Amount) -> None:
        self.amount = amount
        super().__init__(f"Amount tier unknown to mint: {amount}")


def _pairs(source: _Source) -> Iterable[Tuple[Amount, Any]]:
    if source is None:
        return ()
    if isinstance(source, Mapping):
        return source.items()
    return source


def _by_amount(pair: Tuple[Amount, Any]) -> Amount:
    return pair[0]


class Tiered(Generic[T]):
    """One value per amount tier, kept in ascending tier order."""

    __slots__ = ("_map",)

    def __init__(self, items: _Source = None) -> None:
        self._map: dict[Amount, T] = dict(sorted(_pairs(items), key=_by_amount))

    def structural_eq(self, other: "Tiered[Any]") -> bool:
        """True if both hold exactly the same tiers."""
        return list(self._map) == list(other._map)

    def tier(self, amount: Amount) -> T:
        """Return the value of a tier, raising if the tier is unknown."""
        try:
            return self._map[amount]
        except KeyError:
            raise InvalidAmountTierError(amount) from None

    def tiers(self) -> Iterator[Amount]:
        return iter(self._map)

    def items(self) -> Iterator[Tuple[Amount, T]]:
        return iter(self._map.items())

    def get(self, amount: Amount) -> Optional[T]:
        return self._map.get(amount)

    def as_map(self) -> dict[Amount, T]:
        return dict(self._map)

    def map_values(self, func: Callable[[T], U]) -> "Tiered[U]":
        """Return a new Tiered with func applied to every value."""
        return Tiered((amount, func(value)) for amount, value in self._map.items())

    def __contains__(self, amount: object) -> bool:
        return amount in self._map

    def __len__(self) -> int:
        return len(self._map)

    def __iter__(self) -> Iterator[Tuple[Amount, T]]:
        return self.items()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tiered):
            return NotImplemented
        return list(self._map.items()) == list(other._map.items())

    def __repr__(self) -> str:
        return f"Tiered({self._map!r})"


class TieredMulti(Generic[T]):
    """Any number of items per amount tier, e.g. coins of several denominations.

    Tiers are kept in ascending order; items keep their insertion order within a tier.
    """

    __slots__ = ("_tiers",)

    def __init__(self, tiers: _Source = None) -> None:
        self._tiers: dict[Amount, list[T]] = {
            amount: list(items) for amount, items in sorted(_pairs(tiers), key=_by_amount)
        }

    @classmethod
    def from_items(cls, items: Iterable[Tuple[Amount, T]]) -> "TieredMulti[T]":
        result: TieredMulti[T] = cls()
        result.extend(items)
        return result

    def extend(self, items: Iterable[Tuple[Amount, T]]) -> None:
        """Append (amount, item) pairs, creating tiers as needed."""
        added_tier = False
        for amount, item in items:
            bucket = self._tiers.get(amount)
            if bucket is None:
                bucket = self._tiers[amount] = []
                added_tier = True
            bucket.append(item)
        if added_tier:
            self._tiers = dict(sorted(self._tiers.items(), key=_by_amount))

    def total_amount(self) -> Amount:
        return Amount.from_msat(
            sum(tier.milli_sat * len(items) for tier, items in self._tiers.items())
        )

    def item_count(self) -> int:
        return sum(len(items) for items in self._tiers.values())

    def tier_count(self) -> int:
        return len(self._tiers)

    def tiers(self) -> Iterator[Amount]:
        return iter(self._tiers)

    def is_empty(self) -> bool:
        return self.item_count() == 0

    def map(self, func: Callable[[Amount, T], U]) -> "TieredMulti[U]":
        """Apply func(amount, item) to every item; exceptions from func propagate."""
        return TieredMulti(
            (amount, [func(amount, item) for item in items])
            for amount, items in self._tiers.items()
        )

    def structural_eq(self, other: "TieredMulti[Any]") -> bool:
        """True if both have the same tiers with the same number of items in each."""
        if list(self._tiers) != list(other._tiers):
            return False
        return all(
            len(mine) == len(theirs)
            for mine, theirs in zip(self._tiers.values(), other._tiers.values())
        )

    def iter_tiers(self) -> Iterator[Tuple[Amount, list[T]]]:
        return iter(self._tiers.items())

    def iter_items(self) -> Iterator[Tuple[Amount, T]]:
        for amount, items in self._tiers.items():
            for item in items:
                yield amount, item

    def check_tiers(self, keys: Tiered[Any]) -> None:
        """Raise InvalidAmountTierError for the first tier that keys does not have."""
        for amount in self._tiers:
            if amount not in keys:
                raise InvalidAmountTierError(amount)

    def get(self, amount: Amount) -> Optional[list[T]]:
        """Return the (mutable) list of items in a tier, or None."""
        return self._tiers.get(amount)

    def select_coins(self, amount: Amount) -> Optional["TieredMulti[T]"]:
        """Select items worth at least amount, or None if there is not enough.

        If exact change cannot be made the selection exceeds the requested amount.
        """
        total = self.total_amount()
        if amount > total:
            return None
        remaining = total
        selected: list[Tuple[Amount, T]] = []
        for coin_amount, coin in reversed(list(self.iter_items())):
            if amount <= remaining - coin_amount:
                remaining -= coin_amount
            else:
                selected.append((coin_amount, coin))
        return TieredMulti.from_items(selected)

    @classmethod
    def represent_amount(cls, amount: Amount, tiers: Any) -> "TieredMulti[None]":
        """Greedily split amount into counts per tier, largest tier first.

        Every tier of tiers appears in the result, possibly with no items.
        """
        result: dict[Amount, list[None]] = {}
        for tier in reversed(list(tiers.tiers())):
            count = amount // tier
            amount = amount % tier
            result[tier] = [None] * count
        return cls(result)

    def __iter__(self) -> Iterator[Tuple[Amount, T]]:
        return self.iter_items()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TieredMulti):
            return NotImplemented
        return self._tiers == other._tiers

    def __repr__(self) -> str:
        return f"TieredMulti({self._tiers!r})"


class TieredMultiZip(Generic[T]):
    """Zip several (amount, item) iterators that share the same tier structure.

    Yields (amount, [item from each iterator]) and stops when any iterator ends.
    """

    def __init__(self, iterators: Iterable[Iterable[Tuple[Amount, T]]]) -> None:
        self._iterators = [iter(it) for it in iterators]
        if not self._iterators:
            raise ValueError("TieredMultiZip needs at least one iterator")

    def __iter__(self) -> "TieredMultiZip[T]":
        return self

    def __next__(self) -> Tuple[Amount, list[T]]:
        amount: Optional[Amount] = None
        items: list[T] = []
        for iterator in self._iterators:
            item_amount, item = next(iterator)
            if amount is None:
                amount = item_amount
            elif amount != item_amount:
                raise ValueError(
                    f"zipped iterators disagree on tier: {amount} != {item_amount}"
                )
            items.append(item)
        assert amount is not None
        return amount, items