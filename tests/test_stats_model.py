"""Tests for HostStatsModel (Qt model/view pattern)."""

from PySide6.QtCore import Qt

from multiping.models import AddressFamily, HostTarget, StatSnapshot
from multiping.ui.stats_model import HostStatsModel


def target(host_id, address="192.0.2.1", **kwargs):
    return HostTarget(host_id, address, AddressFamily.of(address), 1.0, 2.0, **kwargs)


def cell(model, row, column):
    col = model.columns().index(column)
    return model.data(model.index(row, col), Qt.DisplayRole)


class TestHostStatsModel:
    """Test HostStatsModel behavior."""

    def test_initial_state(self):
        """Test model starts empty with the base columns."""
        model = HostStatsModel()
        assert model.rowCount() == 0
        assert model.columnCount() == 7

    def test_column_headers(self):
        """Test column headers are correct."""
        model = HostStatsModel()
        assert model.headerData(0, Qt.Horizontal, Qt.DisplayRole) == "Host"
        assert model.headerData(2, Qt.Horizontal, Qt.DisplayRole) == "Last (ms)"
        assert model.headerData(6, Qt.Horizontal, Qt.DisplayRole) == "Loss %"
        assert model.headerData(7, Qt.Horizontal, Qt.DisplayRole) is None

    def test_detail_columns(self):
        """Test min/avg/max are inserted after the latest RTT."""
        model = HostStatsModel(show_details=True)
        assert model.columns()[2:6] == ["Last (ms)", "Min (ms)", "Avg (ms)", "Max (ms)"]

    def test_refresh_formats_values(self):
        """Test snapshot values are formatted for display."""
        model = HostStatsModel(show_details=True)
        snap = StatSnapshot(
            host_id=1,
            latest_ms=10.5,
            min_ms=9.0,
            max_ms=12.25,
            mean_ms=10.0,
            jitter_ms=0.75,
            sent=4,
            received=3,
            lost=1,
            loss_ratio=0.25,
            window_fill=4,
        )

        model.refresh([target(1, label="gw")], {1: snap})

        assert model.rowCount() == 1
        assert cell(model, 0, "Host") == "gw"
        assert cell(model, 0, "Address") == "192.0.2.1"
        assert cell(model, 0, "Last (ms)") == "10.50"
        assert cell(model, 0, "Max (ms)") == "12.25"
        assert cell(model, 0, "Jitter (ms)") == "0.75"
        assert cell(model, 0, "Sent") == "4"
        assert cell(model, 0, "Lost") == "1"
        assert cell(model, 0, "Loss %") == "25.0"

    def test_empty_statistics_show_dashes(self):
        """Test a host with no outcomes shows placeholders, not zeros."""
        model = HostStatsModel()
        model.refresh([target(1)], {1: StatSnapshot(host_id=1)})

        assert cell(model, 0, "Last (ms)") == "--"
        assert cell(model, 0, "Jitter (ms)") == "--"
        assert cell(model, 0, "Loss %") == "--"
        assert cell(model, 0, "Sent") == "0"

    def test_host_state_replaces_latency(self):
        """Test paused and unreachable hosts say so in the latency column."""
        model = HostStatsModel()
        model.refresh(
            [target(1, enabled=False), target(2, "2001:db8::1", reachable=False)],
            {1: StatSnapshot(host_id=1, latest_ms=3.0), 2: StatSnapshot(host_id=2)},
        )

        assert cell(model, 0, "Last (ms)") == "paused"
        assert cell(model, 1, "Last (ms)") == "unreachable"

    def test_rows_sorted_by_host_id(self):
        model = HostStatsModel()
        model.refresh([target(3, "192.0.2.3"), target(1, "192.0.2.1")], {})

        assert model.host_id_at(0) == 1
        assert model.host_id_at(1) == 3
        assert model.host_id_at(2) is None
        assert cell(model, 1, "Sent") == "--"

    def test_refresh_same_rows_emits_data_changed(self):
        """Test refreshing unchanged hosts updates cells without a reset."""
        model = HostStatsModel()
        model.refresh([target(1)], {})
        resets = []
        changes = []
        model.modelReset.connect(lambda: resets.append(True))
        model.dataChanged.connect(lambda tl, br, *_: changes.append((tl.row(), br.row(), br.column())))

        model.refresh([target(1)], {1: StatSnapshot(host_id=1, sent=1, lost=1, loss_ratio=1.0, window_fill=1)})

        assert resets == []
        assert changes == [(0, 0, 6)]
        assert cell(model, 0, "Loss %") == "100.0"

    def test_refresh_new_host_resets(self):
        model = HostStatsModel()
        model.refresh([target(1)], {})
        resets = []
        model.modelReset.connect(lambda: resets.append(True))

        model.refresh([target(1), target(2, "192.0.2.2")], {})

        assert resets == [True]
        assert model.rowCount() == 2

    def test_alignment(self):
        model = HostStatsModel()
        model.refresh([target(1)], {})

        host = model.data(model.index(0, 0), Qt.TextAlignmentRole)
        sent = model.data(model.index(0, 4), Qt.TextAlignmentRole)

        assert host == Qt.AlignLeft | Qt.AlignVCenter
        assert sent == Qt.AlignRight | Qt.AlignVCenter

    def test_invalid_index(self):
        """Test invalid index returns None."""
        model = HostStatsModel()
        assert model.data(model.index(5, 0), Qt.DisplayRole) is None
