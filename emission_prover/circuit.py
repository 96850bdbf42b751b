"""
Emission circuit definition.

The circuit reads up to 32 storage slots, asserts that every slot holds
the expected emission value, sums the values, and publishes the sum as
its only public output (a 248-bit unsigned integer).

    for each slot:  slot.value == expected_emission      (constraint)
    output          sum(slot.value for slot in slots)    (uint248)

With every constraint satisfied the output is always
``expected_emission * len(slots)``, so the proof restates "N slots were
read and all of them equal the declared emission" in a form a verifier
can check without the slots themselves.

Circuits are described against a ``CircuitAPI``.  The API does not stop
at the first broken constraint; it records every constraint and whether
it held, and it is up to a proving backend to refuse to produce a
witness when any did not.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, NamedTuple, Tuple

from emission_prover.errors import CircuitInputError

UINT248_BITS = 248
MAX_UINT248 = (1 << UINT248_BITS) - 1


class Allocation(NamedTuple):
    max_receipts: int
    max_storage_slots: int
    max_transactions: int


@dataclass(frozen=True)
class StorageSlot:
    """One storage word read from chain state."""

    block_num: int
    address: str
    slot: int
    value: int


@dataclass(frozen=True)
class CircuitInput:
    storage_slots: Tuple[StorageSlot, ...] = ()
    block_num: int = 0

    def values(self) -> List[int]:
        return [s.value for s in self.storage_slots]


@dataclass
class Constraint:
    label: str
    satisfied: bool


@dataclass
class PublicOutput:
    bits: int
    value: int


@dataclass
class CircuitAPI:
    """Records the constraints and public outputs a circuit declares."""

    constraints: List[Constraint] = field(default_factory=list)
    outputs: List[PublicOutput] = field(default_factory=list)

    def to_uint248(self, value: int, label: str = "uint248_range") -> int:
        self.assert_true(0 <= value <= MAX_UINT248, label)
        return value

    def is_equal(self, a: int, b: int) -> int:
        return 1 if a == b else 0

    def assert_true(self, flag, label: str):
        self.constraints.append(Constraint(label=label, satisfied=bool(flag)))

    def output_uint(self, bits: int, value: int):
        self.assert_true(0 <= value < (1 << bits), f"output_uint{bits}_range")
        self.outputs.append(PublicOutput(bits=bits, value=value))

    @property
    def failed(self) -> List[str]:
        return [c.label for c in self.constraints if not c.satisfied]

    @property
    def satisfied(self) -> bool:
        return not self.failed

    @property
    def public_values(self) -> List[int]:
        return [o.value for o in self.outputs]


class DataStream:
    def __init__(self, api: CircuitAPI, items: Iterable, label: str = "stream"):
        self.api = api
        self.items = list(items)
        self.label = label

    def __iter__(self) -> Iterator:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def assert_each(self, fn: Callable[[object], int], label: str = None):
        label = label or f"{self.label}.assert_each"
        for i, item in enumerate(self.items):
            self.api.assert_true(fn(item) == 1, f"{label}[{i}]")

    def map(self, fn: Callable, label: str = None) -> "DataStream":
        return DataStream(self.api, [fn(item) for item in self.items], label or f"{self.label}.map")

    def sum(self) -> int:
        return sum(self.items)


@dataclass(frozen=True)
class EmissionCircuit:
    expected_emission: int

    def allocate(self) -> Allocation:
        return Allocation(max_receipts=0, max_storage_slots=32, max_transactions=0)

    def define(self, api: CircuitAPI, inputs: CircuitInput):
        max_slots = self.allocate().max_storage_slots
        if len(inputs.storage_slots) > max_slots:
            raise CircuitInputError(
                f"circuit accepts at most {max_slots} storage slots, got {len(inputs.storage_slots)}"
            )

        slots = DataStream(api, inputs.storage_slots, label="storage_slots")
        expected = api.to_uint248(self.expected_emission, "expected_emission_range")

        slots.assert_each(
            lambda slot: api.is_equal(api.to_uint248(slot.value), expected),
            label="slot_equals_expected_emission",
        )

        emissions = slots.map(lambda slot: slot.value, label="emissions")
        total = emissions.sum()

        api.output_uint(UINT248_BITS, total)
