"""Qt table model presenting one row of statistics per monitored host."""

from PySide6.QtCore import QAbstractTableModel, QModelIndex, Qt

from multiping.models import HostTarget, StatSnapshot

BASE_COLUMNS = ["Host", "Address", "Last (ms)", "Jitter (ms)", "Sent", "Lost", "Loss %"]
DETAIL_COLUMNS = ["Min (ms)", "Avg (ms)", "Max (ms)"]

_NUMERIC = {"Last (ms)", "Jitter (ms)", "Sent", "Lost", "Loss %", *DETAIL_COLUMNS}


class HostStatsModel(QAbstractTableModel):
    """Table model over engine snapshots.

    The model holds copies only: ``refresh()`` is called with the current
    targets and snapshots (typically from a QTimer) and either resets the
    model when the set of hosts changed or emits dataChanged for all cells.
    """

    def __init__(self, show_details: bool = False, parent=None):
        super().__init__(parent)
        self._columns = list(BASE_COLUMNS)
        if show_details:
            # Min/Avg/Max go right after Last
            self._columns[3:3] = DETAIL_COLUMNS
        self._targets: list[HostTarget] = []
        self._snapshots: dict[int, StatSnapshot] = {}

        # Cached strings to reduce allocations
        self._dash = "--"
        self._unreachable = "unreachable"
        self._paused = "paused"

    def rowCount(self, parent=QModelIndex()):
        if parent.isValid():
            return 0
        return len(self._targets)

    def columnCount(self, parent=QModelIndex()):
        if parent.isValid():
            return 0
        return len(self._columns)

    def columns(self) -> list[str]:
        return list(self._columns)

    def host_id_at(self, row: int) -> int | None:
        if 0 <= row < len(self._targets):
            return self._targets[row].host_id
        return None

    def data(self, index, role=Qt.DisplayRole):
        if not index.isValid():
            return None
        if index.row() >= len(self._targets) or index.row() < 0:
            return None

        target = self._targets[index.row()]
        column = self._columns[index.column()]

        if role == Qt.DisplayRole:
            return self._display(target, self._snapshots.get(target.host_id), column)
        elif role == Qt.TextAlignmentRole:
            if column in _NUMERIC:
                return Qt.AlignRight | Qt.AlignVCenter
            return Qt.AlignLeft | Qt.AlignVCenter
        return None

    def _display(self, target: HostTarget, snap: StatSnapshot | None, column: str) -> str:
        if column == "Host":
            return target.label
        if column == "Address":
            return target.send_address
        if column == "Last (ms)":
            if not target.reachable:
                return self._unreachable
            if not target.enabled:
                return self._paused
            return self._ms(snap.latest_ms if snap else None)
        if snap is None:
            return self._dash
        if column == "Min (ms)":
            return self._ms(snap.min_ms)
        if column == "Avg (ms)":
            return self._ms(snap.mean_ms)
        if column == "Max (ms)":
            return self._ms(snap.max_ms)
        if column == "Jitter (ms)":
            return self._ms(snap.jitter_ms) if snap.received > 1 else self._dash
        if column == "Sent":
            return str(snap.sent)
        if column == "Lost":
            return str(snap.lost)
        if column == "Loss %":
            return f"{snap.loss_percent:.1f}" if snap.window_fill else self._dash
        return self._dash

    def _ms(self, value: float | None) -> str:
        return self._dash if value is None else f"{value:.2f}"

    def headerData(self, section, orientation, role=Qt.DisplayRole):
        if role == Qt.DisplayRole and orientation == Qt.Horizontal:
            if 0 <= section < len(self._columns):
                return self._columns[section]
        return None

    def flags(self, index):
        if not index.isValid():
            return Qt.NoItemFlags
        return Qt.ItemIsEnabled | Qt.ItemIsSelectable

    def refresh(self, targets: list[HostTarget], snapshots: dict[int, StatSnapshot]):
        """Replace the displayed data with fresh copies."""
        ordered = sorted(targets, key=lambda t: t.host_id)
        same_rows = [t.host_id for t in ordered] == [t.host_id for t in self._targets]

        if not same_rows:
            self.beginResetModel()
        self._targets = ordered
        self._snapshots = dict(snapshots)
        if not same_rows:
            self.endResetModel()
        elif self._targets:
            top_left = self.index(0, 0)
            bottom_right = self.index(len(self._targets) - 1, len(self._columns) - 1)
            self.dataChanged.emit(top_left, bottom_right)
