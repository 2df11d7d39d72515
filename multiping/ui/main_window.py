"""Main window for the multiping dashboard."""

import logging

from PySide6.QtCore import QTimer
from PySide6.QtGui import QCloseEvent
from PySide6.QtWidgets import (
    QAbstractItemView,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QMainWindow,
    QPushButton,
    QTableView,
    QVBoxLayout,
    QWidget,
)

from multiping.engine import MonitorEngine
from multiping.errors import UnknownHostError
from multiping.ui.stats_model import HostStatsModel

logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    """Live table of per-host latency and loss."""

    def __init__(self, engine: MonitorEngine, show_details: bool = False, refresh_ms: int = 500):
        super().__init__()
        self.setWindowTitle("multiping")
        self.setGeometry(100, 100, 900, 400)

        self.engine = engine
        self.model = HostStatsModel(show_details=show_details, parent=self)

        # Poll snapshots at the display's own pace
        self.refresh_timer = QTimer(self)
        self.refresh_timer.timeout.connect(self.refresh)
        self.refresh_timer.start(refresh_ms)

        self.engine.host_added.connect(self.refresh)
        self.engine.host_removed.connect(self.refresh)
        self.engine.host_changed.connect(self.refresh)
        self.engine.scheduler.send_failed.connect(self.on_send_failed)

        self.setup_ui()
        self.refresh()

    def setup_ui(self):
        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        layout = QVBoxLayout(central_widget)

        self.table = QTableView()
        self.table.setModel(self.model)
        self.table.setAlternatingRowColors(True)
        self.table.setSelectionBehavior(QAbstractItemView.SelectRows)
        self.table.setSelectionMode(QAbstractItemView.SingleSelection)
        header = self.table.horizontalHeader()
        header.setSectionResizeMode(QHeaderView.ResizeToContents)
        header.setStretchLastSection(True)
        layout.addWidget(self.table, 1)

        controls = QHBoxLayout()
        self.pause_button = QPushButton("Pause / Resume")
        self.pause_button.clicked.connect(self.toggle_selected)
        controls.addWidget(self.pause_button)

        self.remove_button = QPushButton("Remove Host")
        self.remove_button.clicked.connect(self.remove_selected)
        controls.addWidget(self.remove_button)
        controls.addStretch()

        self.status_label = QLabel("Status: Monitoring")
        self.status_label.setStyleSheet("font-weight: bold;")
        controls.addWidget(self.status_label)
        layout.addLayout(controls)

    def closeEvent(self, event: QCloseEvent) -> None:
        """Stop the refresh timer and the engine before closing."""
        self.refresh_timer.stop()
        self.engine.stop()
        super().closeEvent(event)

    def refresh(self, *_):
        self.model.refresh(self.engine.hosts(), self.engine.get_all_snapshots())

    def selected_host_id(self) -> int | None:
        rows = self.table.selectionModel().selectedRows()
        if not rows:
            return None
        return self.model.host_id_at(rows[0].row())

    def toggle_selected(self):
        host_id = self.selected_host_id()
        if host_id is None:
            return
        try:
            if self.engine.host(host_id).enabled:
                self.engine.disable_host(host_id)
                self.status_label.setText(f"Status: Host {host_id} paused")
            else:
                self.engine.enable_host(host_id)
                self.status_label.setText(f"Status: Host {host_id} resumed")
        except UnknownHostError as e:
            logger.debug("Toggle ignored: %s", e)

    def remove_selected(self):
        host_id = self.selected_host_id()
        if host_id is None:
            return
        try:
            self.engine.remove_host(host_id)
            self.status_label.setText(f"Status: Host {host_id} removed")
        except UnknownHostError as e:
            logger.debug("Remove ignored: %s", e)

    def on_send_failed(self, host_id: int, sequence: int, error_msg: str):
        self.status_label.setText(f"Status: Send failed for host {host_id} - {error_msg}")

    def show_fallback(self, message: str, details: str | None = None):
        """Show that simulated data is displayed instead of real probes."""
        self.status_label.setText(f"Status: {message}")
        self.status_label.setStyleSheet("font-weight: bold; color: orange;")
        if details:
            self.status_label.setToolTip(f"Fallback to simulated data\n\nTechnical details: {details}")
