"""Temporal pooling over a Region.

Input into the TemporalPooler: the columns a spatial pooler declared active
at time t. Output: the same Region with every neuron's active and predictive
state computed for t; ``active OR predictive`` per neuron is what a region
above this one would read.

One timestep runs in three phases, each one finishing over all columns
before the next starts:

1. active state: predicted neurons fire, unpredicted columns burst, and
   every active column picks one learning neuron.
2. predictive state: neurons with an active distal segment become
   predictive; reinforcements for those segments are queued.
3. learning: queued updates of learning neurons are committed positively,
   those of neurons whose prediction just failed negatively, and the
   per-timestep buffer is emptied.

Phases 1 and 2 only touch transient state and the Region's update buffer;
phase 3 is the only one that changes permanences.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from building_blocks import (
    ACTIVATION_THRESHOLD_PCT,
    CONNECTED_PERM,
    INITIAL_PERMANENCE,
    MIN_THRESHOLD,
    NEW_SYNAPSE_COUNT,
    PERMANENCE_DEC,
    PERMANENCE_INC,
    Column,
    DistalSegment,
    DistalSynapse,
    Neuron,
    Region,
    Synapse,
)

logger = logging.getLogger(__name__)


@dataclass
class TemporalPoolerParameters:

    connected_permanence: float = CONNECTED_PERM
    """
    * Member "connected_permanence" is the permanence at or above which a
    * distal synapse counts towards its segment's activity.
    """
    initial_permanence: float = INITIAL_PERMANENCE
    """
    * Member "initial_permanence" is the permanence given to newly grown
    * distal synapses.
    """
    permanence_increment: float = PERMANENCE_INC
    permanence_decrement: float = PERMANENCE_DEC
    activation_threshold: float = ACTIVATION_THRESHOLD_PCT
    """
    * Member "activation_threshold" is the fraction of a new segment's
    * synapses that must be active for the segment to be active.
    """
    min_threshold: int = MIN_THRESHOLD
    """
    * Member "min_threshold" is the number of synapses to previously active
    * neurons a segment needs before learning extends it instead of growing
    * a new segment.
    """
    new_synapse_count: int = NEW_SYNAPSE_COUNT
    """
    * Member "new_synapse_count" caps the active plus newly grown synapses
    * of one segment update.
    """
    predict_all_columns: bool = True
    """
    * Member "predict_all_columns" computes predictive state for every column
    * of the region, so a neuron is predictive exactly when one of its distal
    * segments is active. When False only the active columns are scanned,
    * and neurons outside them are never predictive.
    """
    seed: int = 0
    """
    * Member "seed" drives the choice of new synapse sources. The seed 0 is
    * special and is replaced with a random number.
    """

    def validate(self) -> None:
        for name in ("connected_permanence", "initial_permanence",
                     "permanence_increment", "permanence_decrement",
                     "activation_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.min_threshold < 1:
            raise ValueError(f"min_threshold must be positive, got {self.min_threshold}")
        if self.new_synapse_count < 0:
            raise ValueError(f"new_synapse_count must be non-negative, got {self.new_synapse_count}")


@dataclass(eq=False)
class SegmentUpdate:
    """A queued change to one distal segment of `neuron`.

    A `segment` of None asks for a new segment when committed.
    """

    neuron: Neuron
    segment: Optional[DistalSegment]
    active_synapses: List[Synapse] = field(default_factory=list)
    new_synapse_sources: List[Neuron] = field(default_factory=list)
    sequence_segment: bool = False
    timestep: int = 0


class TemporalPooler:
    """Computes per-neuron active and predictive state on a Region.

    Phase 2 scans every column by default, not only the active ones: a
    neuron predicts the activity of its own column at the next timestep,
    and in a sequence that column is usually not active now. Pass
    ``predict_all_columns=False`` to restrict the scan to the active columns.
    """

    def __init__(self, region: Region, parameters: Optional[TemporalPoolerParameters] = None) -> None:
        if region is None:
            raise ValueError("region in TemporalPooler cannot be None")
        self.region = region
        self.parameters = parameters if parameters is not None else TemporalPoolerParameters()
        self.parameters.validate()
        self.random = random.Random(self.parameters.seed or None)
        self.timestep = 0

    def perform_inference_on_region(self, active_columns: Iterable[Column]) -> Region:
        """Phases 1 and 2 without learning."""
        columns = self._validate_active_columns(active_columns)
        self._next_timestep()
        self.phase_one(columns, learn=False)
        self.phase_two(columns, learn=False)
        # nothing is learned, so the last learning timestep's predictions go unjudged
        self.region.held_segment_updates.clear()
        self._log_timestep(columns)
        return self.region

    def perform_temporal_pooling_on_region(self, active_columns: Iterable[Column]) -> Region:
        """Phases 1, 2 and 3 with learning."""
        columns = self._validate_active_columns(active_columns)
        self._next_timestep()
        self.phase_one(columns, learn=True)
        self.phase_two(columns, learn=True)
        self.phase_three()
        self._log_timestep(columns)
        return self.region

    def reset(self) -> None:
        """Forget all transient state and pending updates; keep learned segments."""
        self.region.clear_states()
        self.timestep = 0

    # ===== Phase 1 =====

    def phase_one(self, active_columns: List[Column], learn: bool = True) -> None:
        """Compute the active state of every neuron in the active columns.

        Running it again within the same timestep replaces the learning
        neuron choice and sequence updates made by the previous run.
        """
        for column in active_columns:
            column.set_active()
            self._reset_learning_choice(column)
            bottom_up_predicted = False
            learning_neuron_chosen = False
            for i, neuron in enumerate(column.neurons):
                if not neuron.prev_predictive:
                    continue
                best_segment = self.best_active_segment(neuron, previous=True)
                if best_segment is not None and best_segment.sequence_segment:
                    bottom_up_predicted = True
                    neuron.set_active()
                    if learn and not learning_neuron_chosen and best_segment.prev_active:
                        learning_neuron_chosen = True
                        self._choose_learning_neuron(column, i)

            if not bottom_up_predicted:
                column.set_bursting()
                for neuron in column.neurons:
                    neuron.set_active()

            if learn and not learning_neuron_chosen:
                index = self.best_matching_neuron_index(column, previous=True)
                neuron = self._choose_learning_neuron(column, index)
                update = self.segment_active_synapses(
                    neuron, self.best_matching_segment(neuron), previous=True, new_synapses=True
                )
                update.sequence_segment = True
                self._queue(update)

    def _choose_learning_neuron(self, column: Column, index: int) -> Neuron:
        column.learning_neuron_index = index
        neuron = column.neurons[index]
        neuron.set_learning()
        return neuron

    def _reset_learning_choice(self, column: Column) -> None:
        column.learning_neuron_index = None
        for neuron in column.neurons:
            neuron.learning = False
            updates = self.region.segment_updates.get(neuron)
            if not updates:
                continue
            kept = [u for u in updates if not (u.sequence_segment and u.timestep == self.timestep)]
            if kept:
                self.region.segment_updates[neuron] = kept
            else:
                del self.region.segment_updates[neuron]

    # ===== Phase 2 =====

    def phase_two(self, active_columns: List[Column], learn: bool = True) -> None:
        """Compute the predictive state of neurons from their distal segments."""
        connected_perm = self.parameters.connected_permanence
        columns = self.region.iter_columns() if self.parameters.predict_all_columns else active_columns
        for column in columns:
            for neuron in column.neurons:
                active_segments = [s for s in neuron.distal_segments if s.is_active(connected_perm)]
                if not active_segments:
                    continue
                neuron.set_predictive()
                for segment in active_segments:
                    segment.set_active()
                if not learn:
                    continue
                # reinforcement of the currently active segments
                for segment in active_segments:
                    self._queue(self.segment_active_synapses(neuron, segment, previous=False))
                # reinforcement of a segment that could have predicted this activation
                predicting_segment = self.best_matching_segment(neuron)
                self._queue(self.segment_active_synapses(
                    neuron, predicting_segment, previous=True, new_synapses=True
                ))

    # ===== Phase 3 =====

    def phase_three(self) -> None:
        """Commit or punish the queued updates whose outcome is known.

        Every update is drained once. Learning neurons commit their held and
        current updates positively, neurons whose prediction just failed
        negatively. Updates queued this timestep for any other neuron are
        held for one timestep only; older held updates are dropped. The
        per-timestep buffer is empty afterwards.
        """
        held = self.region.held_segment_updates
        pending = self.region.segment_updates
        next_held = {}
        committed = 0
        for neuron in dict.fromkeys([*held, *pending]):
            updates = held.get(neuron, []) + pending.get(neuron, [])
            if neuron.learning:
                self.adapt_segments(updates, positive=True)
            elif neuron.prev_predictive and not neuron.predictive:
                self.adapt_segments(updates, positive=False)
            else:
                if neuron in pending:
                    next_held[neuron] = pending[neuron]
                continue
            committed += len(updates)
        pending.clear()
        self.region.held_segment_updates = next_held
        logger.debug("t=%d committed %d segment updates, holding %d neurons",
                     self.timestep, committed, len(next_held))

    def adapt_segments(self, updates: List[SegmentUpdate], positive: bool) -> None:
        """Apply segment updates.

        Positive: listed synapses are incremented, the segment's other
        synapses decremented, new synapses grown. Negative: listed synapses
        are decremented and nothing is grown. A new segment is only created
        when there is something to grow on it.
        """
        params = self.parameters
        for update in updates:
            segment = update.segment
            if segment is None:
                if not positive or not update.new_synapse_sources:
                    continue
                segment = update.neuron.add_distal_segment(params.activation_threshold)
            reinforced = set(update.active_synapses)
            for synapse in segment.synapses:
                if synapse in reinforced:
                    synapse.adjust_permanence(positive, params.permanence_increment, params.permanence_decrement)
                elif positive:
                    synapse.adjust_permanence(False, params.permanence_increment, params.permanence_decrement)
            if not positive:
                continue
            existing = {synapse.cell for synapse in segment.synapses}
            for source in update.new_synapse_sources:
                if source not in existing:
                    segment.add_synapse(DistalSynapse(source, params.initial_permanence))
            if update.sequence_segment:
                segment.sequence_segment = True

    # ===== Auxiliary operations =====

    def best_active_segment(self, neuron: Neuron, previous: bool = False) -> Optional[DistalSegment]:
        """Return the distal segment with the most active synapses, or None."""
        if neuron is None:
            raise ValueError("neuron in TemporalPooler.best_active_segment cannot be None")
        segment, _ = neuron.find_best_segment(self.parameters.connected_permanence, previous)
        return segment

    def best_matching_neuron_index(self, column: Column, previous: bool = False) -> int:
        """Return the index of the neuron whose best segment has the most active synapses.

        Ties go to the lowest index; a column without any active synapses
        yields 0.
        """
        if column is None:
            raise ValueError("column in TemporalPooler.best_matching_neuron_index cannot be None")
        best_matching_neuron_index = 0
        greatest_number_of_active_synapses = 0
        for i, neuron in enumerate(column.neurons):
            _, count = neuron.find_best_segment(self.parameters.connected_permanence, previous)
            if count > greatest_number_of_active_synapses:
                greatest_number_of_active_synapses = count
                best_matching_neuron_index = i
        return best_matching_neuron_index

    def best_matching_segment(self, neuron: Neuron) -> Optional[DistalSegment]:
        """Return the segment with the most synapses to previously active neurons.

        Permanence is ignored. Segments below ``min_threshold`` never match.
        """
        if neuron is None:
            raise ValueError("neuron in TemporalPooler.best_matching_segment cannot be None")
        best_segment = None
        greatest = self.parameters.min_threshold - 1
        for segment in neuron.distal_segments:
            count = len(segment.matching_synapses(previous=True))
            if count > greatest:
                greatest = count
                best_segment = segment
        return best_segment

    def segment_active_synapses(
        self,
        neuron: Neuron,
        segment: Optional[DistalSegment],
        previous: bool = False,
        new_synapses: bool = False,
    ) -> SegmentUpdate:
        """Build an update holding the synapses of `segment` whose sources are active.

        With `previous` the sources must have been active last timestep. With
        `new_synapses` the update also names neurons that were learning last
        timestep, to grow synapses to, up to ``new_synapse_count``.
        """
        if neuron is None:
            raise ValueError("neuron in TemporalPooler.segment_active_synapses cannot be None")
        active = segment.matching_synapses(previous) if segment is not None else []
        sources: List[Neuron] = []
        if new_synapses:
            existing = {synapse.cell for synapse in segment.synapses} if segment is not None else set()
            candidates = [
                other for other in self.region.neurons()
                if other.prev_learning and other is not neuron and other not in existing
            ]
            count = min(self.parameters.new_synapse_count - len(active), len(candidates))
            if count > 0:
                sources = self.random.sample(candidates, count)
        return SegmentUpdate(neuron, segment, active, sources, timestep=self.timestep)

    # ===== Helpers =====

    def _queue(self, update: SegmentUpdate) -> None:
        self.region.segment_updates.setdefault(update.neuron, []).append(update)

    def _next_timestep(self) -> None:
        self.timestep += 1
        self.region.advance_states()

    def _validate_active_columns(self, active_columns: Iterable[Column]) -> List[Column]:
        if active_columns is None:
            raise ValueError("active_columns in TemporalPooler cannot be None")
        columns = {}
        for column in active_columns:
            if not isinstance(column, Column):
                raise TypeError(f"Active columns must be Column instances, got {type(column).__name__}.")
            if self.region.get_column(*column.position) is not column:
                raise ValueError(f"{column!r} does not belong to region '{self.region.name}'.")
            columns[column.position] = column
        return [columns[position] for position in sorted(columns)]

    def _log_timestep(self, active_columns: List[Column]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        bursting = sum(1 for column in active_columns if column.bursting)
        predictive = sum(1 for neuron in self.region.neurons() if neuron.predictive)
        logger.debug(
            "t=%d region '%s': %d active columns, %d bursting, %d predictive neurons, %d neurons holding updates",
            self.timestep, self.region.name, len(active_columns), bursting, predictive,
            len(self.region.held_segment_updates),
        )
