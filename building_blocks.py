"""Building blocks of a single cortical region.

Sensor cells feed columns through proximal segments; neurons inside a column
grow distal segments onto other neurons of the same region. All boolean
states are double buffered: ``advance_state`` moves the current value into
``prev_*`` and clears the current one before a new timestep is computed.
"""

from itertools import chain
from statistics import fmean, pstdev
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

import numpy as np

# Constants
CONNECTED_PERM = 0.2  # Permanence threshold for a synapse to be considered connected
INITIAL_PERMANENCE = 0.3  # Initial permanence for new synapses
PERMANENCE_INC = 0.05  # Amount by which synapses are incremented during learning
PERMANENCE_DEC = 0.05  # Amount by which synapses are decremented during learning
ACTIVATION_THRESHOLD_PCT = 0.5  # Fraction of a segment's synapses that must be active
MIN_THRESHOLD = 1  # Previously active synapses needed for a segment to match
NEW_SYNAPSE_COUNT = 10  # Max synapses a learning segment reaches through growth
CELLS_PER_COLUMN = 4


def make_state_class(label: str):
    """Create a mixin that tracks current and previous boolean states for `label`."""
    attr = label.lower()
    prev_attr = f"prev_{attr}"
    new_class = None

    def __init__(self, *args, **kwargs):
        super(new_class, self).__init__(*args, **kwargs)
        setattr(self, attr, False)
        setattr(self, prev_attr, False)

    def set_state(self):
        setattr(self, attr, True)

    def advance_state(self):
        setattr(self, prev_attr, getattr(self, attr))
        setattr(self, attr, False)

    def clear_state(self):
        setattr(self, attr, False)
        setattr(self, prev_attr, False)

    namespace = {
        "__init__": __init__,
        "state_name": attr,
        "prev_state_name": prev_attr,
        f"set_{attr}": set_state,
        "advance_state": advance_state,
        "clear_state": clear_state,
    }

    new_class = type(label.capitalize(), (object,), namespace)
    return new_class

Active = make_state_class("active")
Predictive = make_state_class("predictive")
Learning = make_state_class("learning")
Bursting = make_state_class("bursting")


def _state_mixins(obj) -> Iterator[type]:
    for cls in type(obj).__mro__:
        if "state_name" in vars(cls):
            yield cls


def advance_mixin_states(obj) -> None:
    """Advance every state mixin `obj` inherits (current -> previous)."""
    for cls in _state_mixins(obj):
        cls.advance_state(obj)


def clear_mixin_states(obj) -> None:
    for cls in _state_mixins(obj):
        cls.clear_state(obj)


# ===== Cells =====

class Cell(Active):
    """Anything a synapse can read activity from."""

    def advance_state(self) -> None:
        advance_mixin_states(self)

    def clear_state(self) -> None:
        clear_mixin_states(self)


class SensorCell(Cell):
    """Leaf input unit at a fixed (x, y) position of the sensor grid."""

    def __init__(self, x: int, y: int) -> None:
        super().__init__()
        self.x: int = x
        self.y: int = y

    @property
    def position(self) -> Tuple[int, int]:
        return self.x, self.y

    def __repr__(self) -> str:
        return f"SensorCell(x={self.x}, y={self.y})"


class SensorCellLayer:
    """A W x H grid of sensor cells, indexed ``layer[x][y]``."""

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(
                f"SensorCellLayer dimensions must be positive, got {width}x{height}."
            )
        self.cells: List[List[SensorCell]] = [
            [SensorCell(x, y) for y in range(height)] for x in range(width)
        ]

    def __len__(self) -> int:
        return len(self.cells)

    def __getitem__(self, x: int) -> List[SensorCell]:
        return self.cells[x]

    def __iter__(self):
        return iter(self.cells)

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self.cells), len(self.cells[0])

    def feed(self, bitmap) -> None:
        """Advance every sensor cell and activate those set in `bitmap`."""
        values = np.asarray(bitmap, dtype=bool)
        if values.shape != self.shape:
            raise ValueError(
                f"Sensor bitmap shape {values.shape} != sensor layer shape {self.shape}."
            )
        for x, row in enumerate(self.cells):
            for y, cell in enumerate(row):
                cell.advance_state()
                if values[x, y]:
                    cell.set_active()

    def active_bitmap(self) -> np.ndarray:
        return np.array([[cell.active for cell in row] for row in self.cells], dtype=bool)

    def clear_states(self) -> None:
        for cell in chain.from_iterable(self.cells):
            cell.clear_state()


# ===== Synapses and Segments =====

class Synapse:
    """Connection from a source cell onto a segment.

    The source is a shared back-reference: many synapses may read the same
    cell. ``x``/``y`` record where the source sits in its grid.
    """

    def __init__(
        self,
        cell: Cell,
        x: Optional[int] = None,
        y: Optional[int] = None,
        permanence: float = INITIAL_PERMANENCE,
    ) -> None:
        if cell is None:
            raise ValueError("cell in Synapse cannot be None")
        self.cell: Cell = cell
        self.x: Optional[int] = x
        self.y: Optional[int] = y
        self.permanence: float = permanence

    def __repr__(self) -> str:
        return f"Synapse(cell={self.cell!r}, permanence={self.permanence:.3f})"

    def is_connected(self, connected_perm: float = CONNECTED_PERM) -> bool:
        return self.permanence >= connected_perm

    def adjust_permanence(
        self,
        increase: bool,
        increment: float = PERMANENCE_INC,
        decrement: float = PERMANENCE_DEC,
    ) -> None:
        """Move permanence up or down, clamped to [0, 1]."""
        if increase:
            self.permanence = min(1.0, self.permanence + increment)
        else:
            self.permanence = max(0.0, self.permanence - decrement)


class DistalSynapse(Synapse):
    """Synapse whose source is another neuron of the same region."""

    def __init__(self, neuron: 'Neuron', permanence: float = INITIAL_PERMANENCE) -> None:
        if neuron is None:
            raise ValueError("neuron in DistalSynapse cannot be None")
        x, y = neuron.column_position
        super().__init__(neuron, x, y, permanence)
        self.neuron_index: int = neuron.index


class Segment(Active):
    """A group of synapses that is active when enough of its sources are."""

    def __init__(self, activation_threshold: float = ACTIVATION_THRESHOLD_PCT) -> None:
        super().__init__()
        self.synapses: List[Synapse] = []
        self.sequence_segment: bool = False  # Predicts the start of a learned sequence
        self.activation_threshold: float = activation_threshold

    def __repr__(self) -> str:
        return f"{type(self).__name__}(synapses={len(self.synapses)}, sequence={self.sequence_segment})"

    def add_synapse(self, synapse: Synapse) -> None:
        if synapse is None:
            raise ValueError("synapse in Segment.add_synapse cannot be None")
        self.synapses.append(synapse)

    def active_synapses(
        self,
        connected_perm: float = CONNECTED_PERM,
        previous: bool = False,
    ) -> List[Synapse]:
        """Return connected synapses whose source is active (or was, if `previous`)."""
        if previous:
            return [syn for syn in self.synapses
                    if syn.cell.prev_active and syn.permanence >= connected_perm]
        return [syn for syn in self.synapses
                if syn.cell.active and syn.permanence >= connected_perm]

    def matching_synapses(self, previous: bool = True) -> List[Synapse]:
        """Return synapses to active sources regardless of permanence."""
        if previous:
            return [syn for syn in self.synapses if syn.cell.prev_active]
        return [syn for syn in self.synapses if syn.cell.active]

    def count_active_synapses(
        self,
        connected_perm: float = CONNECTED_PERM,
        previous: bool = False,
    ) -> int:
        return len(self.active_synapses(connected_perm, previous))

    @property
    def number_of_active_synapses(self) -> int:
        return self.count_active_synapses()

    @property
    def number_of_previous_active_synapses(self) -> int:
        return self.count_active_synapses(previous=True)

    def is_active(self, connected_perm: float = CONNECTED_PERM) -> bool:
        """True when the active fraction of synapses exceeds the threshold."""
        if not self.synapses:
            return False
        count = self.count_active_synapses(connected_perm)
        return count > self.activation_threshold * len(self.synapses)


class ProximalSegment(Segment):
    """Column-level segment fed by the sensor layer."""


class DistalSegment(Segment):
    """Neuron-level segment fed by other neurons of the region."""


# ===== Neurons, Columns and the Region =====

class Neuron(Cell, Predictive, Learning):
    """Cell ``index`` of the column at ``column_position``."""

    def __init__(self, column_position: Tuple[int, int], index: int) -> None:
        super().__init__()
        self.column_position: Tuple[int, int] = column_position
        self.index: int = index
        self.distal_segments: List[DistalSegment] = []

    def __repr__(self) -> str:
        x, y = self.column_position
        return f"Neuron(column=({x}, {y}), index={self.index})"

    @property
    def position(self) -> Tuple[int, int, int]:
        return (*self.column_position, self.index)

    def add_distal_segment(
        self,
        activation_threshold: float = ACTIVATION_THRESHOLD_PCT,
    ) -> DistalSegment:
        segment = DistalSegment(activation_threshold)
        self.distal_segments.append(segment)
        return segment

    def find_best_segment(
        self,
        connected_perm: float = CONNECTED_PERM,
        previous: bool = False,
    ) -> Tuple[Optional[DistalSegment], int]:
        """Return the distal segment with the most active synapses and its count.

        The first segment wins ties. A segment with zero active synapses is
        still eligible, so ``(None, -1)`` means the neuron has no segments.
        """
        best_segment = None
        greatest_number_of_active_synapses = -1
        for segment in self.distal_segments:
            count = segment.count_active_synapses(connected_perm, previous)
            if count > greatest_number_of_active_synapses:
                greatest_number_of_active_synapses = count
                best_segment = segment
        return best_segment, greatest_number_of_active_synapses

    def advance_state(self) -> None:
        advance_mixin_states(self)
        for segment in self.distal_segments:
            segment.advance_state()

    def clear_state(self) -> None:
        clear_mixin_states(self)
        for segment in self.distal_segments:
            segment.clear_state()


class Column(Active, Bursting):
    """Vertical stack of neurons sharing one proximal segment."""

    def __init__(self, position: Tuple[int, int], cells_per_column: int = CELLS_PER_COLUMN) -> None:
        super().__init__()
        if cells_per_column < 1:
            raise ValueError(f"cells_per_column must be positive, got {cells_per_column}.")
        self.position: Tuple[int, int] = position
        self.neurons: List[Neuron] = [Neuron(position, i) for i in range(cells_per_column)]
        self.proximal_segment: ProximalSegment = ProximalSegment()
        self.learning_neuron_index: Optional[int] = None

    def __repr__(self) -> str:
        return f"Column(position={self.position})"

    @property
    def learning_neuron(self) -> Optional[Neuron]:
        if self.learning_neuron_index is None:
            return None
        return self.neurons[self.learning_neuron_index]

    @property
    def distal_segments(self) -> List[DistalSegment]:
        """Return all distal segments on all neurons in this column."""
        return list(chain.from_iterable(neuron.distal_segments for neuron in self.neurons))

    def advance_state(self) -> None:
        advance_mixin_states(self)
        self.learning_neuron_index = None
        for neuron in self.neurons:
            neuron.advance_state()

    def clear_state(self) -> None:
        clear_mixin_states(self)
        self.learning_neuron_index = None
        for neuron in self.neurons:
            neuron.clear_state()


class Region:
    """A fixed ``x_length`` x ``y_length`` grid of columns.

    ``segment_updates`` is the region's per-timestep learning buffer: queued
    segment updates keyed by the neuron that owns them. The temporal pooler
    fills it during its first two phases, drains it in the third and then
    empties it. ``held_segment_updates`` carries the updates of the last
    timestep's predictions, whose outcome is only known one timestep later;
    it is replaced on every drain.
    """

    def __init__(
        self,
        name: str,
        x_length: int,
        y_length: int,
        cells_per_column: int = CELLS_PER_COLUMN,
    ) -> None:
        if x_length <= 0 or y_length <= 0:
            raise ValueError(
                f"Region '{name}' dimensions must be positive, got {x_length}x{y_length}."
            )
        self.name: str = name
        self.cells_per_column: int = cells_per_column
        self.columns: List[List[Column]] = [
            [Column((x, y), cells_per_column) for y in range(y_length)]
            for x in range(x_length)
        ]
        self.segment_updates: Dict[Neuron, list] = {}
        self.held_segment_updates: Dict[Neuron, list] = {}

    def __repr__(self) -> str:
        x_length, y_length = self.shape
        return f"Region(name={self.name!r}, shape=({x_length}, {y_length}))"

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self.columns), len(self.columns[0])

    def get_column(self, x: int, y: int) -> Column:
        x_length, y_length = self.shape
        if not (0 <= x < x_length and 0 <= y < y_length):
            raise ValueError(
                f"Column ({x}, {y}) out of bounds for region '{self.name}' of shape {self.shape}."
            )
        return self.columns[x][y]

    def iter_columns(self) -> Iterator[Column]:
        return chain.from_iterable(self.columns)

    def neurons(self) -> Iterator[Neuron]:
        return chain.from_iterable(column.neurons for column in self.iter_columns())

    @property
    def active_columns(self) -> List[Column]:
        return [column for column in self.iter_columns() if column.active]

    @property
    def bursting_columns(self) -> List[Column]:
        return [column for column in self.iter_columns() if column.bursting]

    def advance_states(self) -> None:
        for column in self.iter_columns():
            column.advance_state()

    def clear_states(self) -> None:
        for column in self.iter_columns():
            column.clear_state()
        self.segment_updates.clear()
        self.held_segment_updates.clear()

    def output_bitmap(self) -> np.ndarray:
        """Return ``active OR predictive`` per neuron, shaped (x, y, cells)."""
        x_length, y_length = self.shape
        output = np.zeros((x_length, y_length, self.cells_per_column), dtype=bool)
        for column in self.iter_columns():
            x, y = column.position
            for neuron in column.neurons:
                output[x, y, neuron.index] = neuron.active or neuron.predictive
        return output

    def print_stats(self, connected_perm: float = CONNECTED_PERM) -> None:
        """Print statistics about the distal segments and synapses of the region."""
        def describe(values: Sequence[float]) -> Tuple[float, float, float, float]:
            if not values:
                return 0.0, 0.0, 0.0, 0.0
            std_val = pstdev(values) if len(values) > 1 else 0.0
            return fmean(values), std_val, min(values), max(values)

        def format_metric(label: str, stats: Tuple[float, float, float, float], precision: str) -> str:
            mean_val, std_val, min_val, max_val = (format(v, precision) for v in stats)
            return f"| {label:<22}| {mean_val:>8} ± {std_val:<8}| {min_val:>8} | {max_val:>8} |"

        neurons = list(self.neurons())
        segments_per_neuron = [len(neuron.distal_segments) for neuron in neurons]
        all_segments = [segment for neuron in neurons for segment in neuron.distal_segments]
        synapses_per_segment = [len(segment.synapses) for segment in all_segments]
        permanences = [syn.permanence for segment in all_segments for syn in segment.synapses]
        connected = sum(1 for perm in permanences if perm >= connected_perm)
        connected_ratio = (connected / len(permanences)) if permanences else 0.0
        proximal = sum(len(column.proximal_segment.synapses) for column in self.iter_columns())

        table_lines = [
            "+------------------------+--------------------+----------+----------+",
            "| Metric                 |   Mean ± Std      |      Min |      Max |",
            "+------------------------+--------------------+----------+----------+",
            format_metric("Segments per neuron", describe(segments_per_neuron), ".2f"),
            format_metric("Synapses per segment", describe(synapses_per_segment), ".2f"),
            format_metric("Permanence", describe(permanences), ".3f"),
            "+------------------------+--------------------+----------+----------+",
        ]

        print(f"Region '{self.name}' statistics:")
        print(
            f"  Columns: {len(list(self.iter_columns()))} | Neurons: {len(neurons)}"
            f" | Distal segments: {len(all_segments)} | Proximal synapses: {proximal}"
        )
        for line in table_lines:
            print(f"  {line}")
        print(
            f"  Connected distal synapses (>= {connected_perm}): {connected}"
            f" ({connected_ratio:.1%} of all distal synapses)"
        )
