"""
Unit tests for the region building blocks.

Tests cover:
- Double-buffered state mixins (Cell, Neuron, Column, Segment)
- Sensor cells and the sensor layer
- Synapse permanence adjustment and segment activity
- Region grid construction, state advance and output bitmap
"""

import unittest
import numpy as np
from building_blocks import (
    SensorCell,
    SensorCellLayer,
    Synapse,
    DistalSynapse,
    Segment,
    ProximalSegment,
    DistalSegment,
    Neuron,
    Column,
    Region,
    CONNECTED_PERM,
    INITIAL_PERMANENCE,
    PERMANENCE_INC,
    PERMANENCE_DEC,
)


class TestStateBuffering(unittest.TestCase):
    """Test current/previous state handling."""

    def test_neuron_creation(self):
        """Test Neuron initialization."""
        neuron = Neuron((2, 3), 1)
        self.assertEqual(neuron.position, (2, 3, 1))
        self.assertEqual(len(neuron.distal_segments), 0)
        for attr in ("active", "prev_active", "predictive", "prev_predictive", "learning", "prev_learning"):
            self.assertFalse(getattr(neuron, attr), attr)

    def test_advance_moves_current_into_previous(self):
        """Advancing copies every current flag into its previous slot and clears it."""
        neuron = Neuron((0, 0), 0)
        neuron.set_active()
        neuron.set_predictive()
        neuron.advance_state()

        self.assertTrue(neuron.prev_active)
        self.assertTrue(neuron.prev_predictive)
        self.assertFalse(neuron.prev_learning)
        self.assertFalse(neuron.active)
        self.assertFalse(neuron.predictive)

        neuron.advance_state()
        self.assertFalse(neuron.prev_active)
        self.assertFalse(neuron.prev_predictive)

    def test_advance_reaches_distal_segments(self):
        """Segments owned by a neuron advance with it."""
        neuron = Neuron((0, 0), 0)
        segment = neuron.add_distal_segment()
        segment.set_active()
        neuron.advance_state()
        self.assertTrue(segment.prev_active)
        self.assertFalse(segment.active)

    def test_clear_state(self):
        """Clearing zeroes both current and previous flags."""
        column = Column((0, 0), cells_per_column=2)
        column.set_active()
        column.set_bursting()
        column.learning_neuron_index = 1
        column.neurons[1].set_learning()
        column.advance_state()
        column.set_active()
        column.clear_state()

        self.assertFalse(column.active)
        self.assertFalse(column.prev_active)
        self.assertFalse(column.prev_bursting)
        self.assertIsNone(column.learning_neuron_index)
        self.assertFalse(column.neurons[1].prev_learning)


class TestSensorCells(unittest.TestCase):
    """Test SensorCell and SensorCellLayer."""

    def test_sensor_cell_position(self):
        cell = SensorCell(4, 7)
        self.assertEqual(cell.position, (4, 7))
        self.assertFalse(cell.active)

    def test_layer_indexing(self):
        """Layer cells are indexed [x][y] and know their own coordinates."""
        layer = SensorCellLayer(5, 3)
        self.assertEqual(layer.shape, (5, 3))
        self.assertEqual(len(layer), 5)
        self.assertEqual(layer[4][2].position, (4, 2))

    def test_feed_sets_activity(self):
        """Feeding a bitmap advances state and activates the set bits."""
        layer = SensorCellLayer(3, 2)
        first = np.array([[1, 0], [0, 0], [0, 1]], dtype=bool)
        layer.feed(first)
        np.testing.assert_array_equal(layer.active_bitmap(), first)

        layer.feed(np.zeros((3, 2), dtype=bool))
        self.assertFalse(layer.active_bitmap().any())
        self.assertTrue(layer[0][0].prev_active)
        self.assertTrue(layer[2][1].prev_active)
        self.assertFalse(layer[1][1].prev_active)

    def test_feed_rejects_wrong_shape(self):
        layer = SensorCellLayer(3, 2)
        with self.assertRaises(ValueError):
            layer.feed(np.zeros((2, 3), dtype=bool))

    def test_invalid_dimensions(self):
        with self.assertRaises(ValueError):
            SensorCellLayer(0, 4)


class TestSynapsesAndSegments(unittest.TestCase):
    """Test Synapse permanence and Segment activity."""

    def test_synapse_creation(self):
        """Test Synapse initialization."""
        cell = SensorCell(1, 2)
        synapse = Synapse(cell, 1, 2)
        self.assertIs(synapse.cell, cell)
        self.assertEqual((synapse.x, synapse.y), (1, 2))
        self.assertEqual(synapse.permanence, INITIAL_PERMANENCE)

    def test_synapse_requires_cell(self):
        with self.assertRaises(ValueError):
            Synapse(None)

    def test_distal_synapse_records_neuron_position(self):
        neuron = Neuron((3, 5), 2)
        synapse = DistalSynapse(neuron, 0.4)
        self.assertEqual((synapse.x, synapse.y, synapse.neuron_index), (3, 5, 2))
        self.assertIs(synapse.cell, neuron)

    def test_permanence_is_clamped(self):
        """Permanence never leaves [0, 1]."""
        synapse = Synapse(SensorCell(0, 0), permanence=0.99)
        synapse.adjust_permanence(increase=True)
        self.assertEqual(synapse.permanence, 1.0)

        synapse = Synapse(SensorCell(0, 0), permanence=0.01)
        synapse.adjust_permanence(increase=False)
        self.assertEqual(synapse.permanence, 0.0)

    def test_permanence_steps(self):
        synapse = Synapse(SensorCell(0, 0), permanence=0.5)
        synapse.adjust_permanence(increase=True)
        self.assertAlmostEqual(synapse.permanence, 0.5 + PERMANENCE_INC)
        synapse.adjust_permanence(increase=False)
        synapse.adjust_permanence(increase=False)
        self.assertAlmostEqual(synapse.permanence, 0.5 + PERMANENCE_INC - 2 * PERMANENCE_DEC)

    def test_active_synapse_counts(self):
        """Only connected synapses to active sources count as active."""
        cells = [SensorCell(i, 0) for i in range(3)]
        segment = ProximalSegment()
        segment.add_synapse(Synapse(cells[0], permanence=CONNECTED_PERM + 0.1))
        segment.add_synapse(Synapse(cells[1], permanence=CONNECTED_PERM - 0.1))
        segment.add_synapse(Synapse(cells[2], permanence=CONNECTED_PERM + 0.1))
        for cell in cells[:2]:
            cell.set_active()

        self.assertEqual(segment.number_of_active_synapses, 1)
        self.assertEqual(len(segment.matching_synapses(previous=False)), 2)
        self.assertEqual(segment.number_of_previous_active_synapses, 0)

        for cell in cells:
            cell.advance_state()
        self.assertEqual(segment.number_of_active_synapses, 0)
        self.assertEqual(segment.number_of_previous_active_synapses, 1)
        self.assertEqual(len(segment.matching_synapses(previous=True)), 2)

    def test_segment_activation_threshold(self):
        """A segment is active when more than its threshold fraction is active."""
        neurons = [Neuron((0, 0), i) for i in range(4)]
        segment = DistalSegment(activation_threshold=0.5)
        for neuron in neurons:
            segment.add_synapse(DistalSynapse(neuron, 0.5))

        neurons[0].set_active()
        neurons[1].set_active()
        self.assertFalse(segment.is_active())

        neurons[2].set_active()
        self.assertTrue(segment.is_active())

    def test_empty_segment_is_never_active(self):
        self.assertFalse(Segment().is_active())
        self.assertFalse(Segment(activation_threshold=0.0).is_active())

    def test_find_best_segment(self):
        """The first segment with the most active synapses wins; zero counts are eligible."""
        source = Neuron((1, 0), 0)
        neuron = Neuron((0, 0), 0)
        self.assertEqual(neuron.find_best_segment(), (None, -1))

        empty = neuron.add_distal_segment()
        self.assertEqual(neuron.find_best_segment(), (empty, 0))

        first = neuron.add_distal_segment()
        first.add_synapse(DistalSynapse(source, 0.5))
        second = neuron.add_distal_segment()
        second.add_synapse(DistalSynapse(source, 0.5))
        source.set_active()
        self.assertEqual(neuron.find_best_segment(), (first, 1))


class TestColumnAndRegion(unittest.TestCase):
    """Test Column and Region construction and state."""

    def test_column_creation(self):
        """Test Column initialization."""
        column = Column((2, 3), cells_per_column=4)
        self.assertEqual(column.position, (2, 3))
        self.assertEqual(len(column.neurons), 4)
        self.assertEqual([n.index for n in column.neurons], [0, 1, 2, 3])
        self.assertEqual(len(column.proximal_segment.synapses), 0)
        self.assertIsNone(column.learning_neuron)

    def test_column_rejects_no_cells(self):
        with self.assertRaises(ValueError):
            Column((0, 0), cells_per_column=0)

    def test_region_grid(self):
        region = Region("V1", 3, 2, cells_per_column=2)
        self.assertEqual(region.shape, (3, 2))
        self.assertEqual(len(list(region.iter_columns())), 6)
        self.assertEqual(len(list(region.neurons())), 12)
        self.assertEqual(region.get_column(2, 1).position, (2, 1))
        self.assertIs(region.columns[2][1], region.get_column(2, 1))

    def test_region_rejects_bad_coordinates(self):
        region = Region("V1", 3, 2)
        with self.assertRaises(ValueError):
            region.get_column(3, 0)
        with self.assertRaises(ValueError):
            region.get_column(0, -1)

    def test_region_rejects_bad_dimensions(self):
        with self.assertRaises(ValueError):
            Region("V1", 0, 8)

    def test_output_bitmap(self):
        """Output is active OR predictive per neuron."""
        region = Region("V1", 2, 2, cells_per_column=3)
        region.get_column(0, 1).neurons[2].set_active()
        region.get_column(1, 0).neurons[0].set_predictive()
        output = region.output_bitmap()

        self.assertEqual(output.shape, (2, 2, 3))
        self.assertEqual(int(output.sum()), 2)
        self.assertTrue(output[0, 1, 2])
        self.assertTrue(output[1, 0, 0])

    def test_region_clear_states_empties_pending_updates(self):
        region = Region("V1", 1, 1, cells_per_column=1)
        neuron = region.get_column(0, 0).neurons[0]
        neuron.set_active()
        region.segment_updates[neuron] = ["pending"]
        region.held_segment_updates[neuron] = ["held"]
        region.clear_states()
        self.assertFalse(neuron.active)
        self.assertEqual(region.segment_updates, {})
        self.assertEqual(region.held_segment_updates, {})

    def test_region_active_columns(self):
        region = Region("V1", 2, 2)
        region.get_column(1, 1).set_active()
        self.assertEqual(region.active_columns, [region.get_column(1, 1)])
        region.advance_states()
        self.assertEqual(region.active_columns, [])
        self.assertTrue(region.get_column(1, 1).prev_active)


if __name__ == '__main__':
    unittest.main()
