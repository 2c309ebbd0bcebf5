import pyqtgraph as pg
from PyQt6.QtCore import Qt
from PyQt6.QtWidgets import QWidget, QVBoxLayout
import numpy as np
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Configure PyQtGraph background and foreground
pg.setConfigOption('background', 'w')
pg.setConfigOption('foreground', 'k')


class HistogramWidget(QWidget):
    """Plots the bin counts, cumulative histogram and lookup table of a run."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self.plot_widget = pg.PlotWidget(title="Histogram")
        self.plot_widget.showGrid(x=True, y=True, alpha=0.3)
        self.plot_widget.setLabel('left', 'Count')
        self.plot_widget.setLabel('bottom', 'Bin')
        self.plot_widget.addLegend()

        self.histogram_bars = pg.BarGraphItem(x=[], height=[], width=0.8, brush='b', name='Histogram')
        self.plot_widget.addItem(self.histogram_bars)

        self.cumulative_curve = self.plot_widget.plot(pen=pg.mkPen('k', width=2), name='Cumulative')
        self.lut_curve = self.plot_widget.plot(pen=pg.mkPen('r', width=2, style=Qt.PenStyle.DashLine), name='LUT (scaled)')

        layout = QVBoxLayout(self)
        layout.addWidget(self.plot_widget)
        self.setLayout(layout)

        self.current_hist_data = None

    def update_from_result(self, result):
        """Show the arrays of an EqualizationResult."""
        histogram = np.asarray(result.histogram, dtype=np.float64)
        if histogram.size == 0:
            self.clear_histogram()
            return

        bins = np.arange(histogram.size)
        cumulative = np.asarray(result.cumulative, dtype=np.float64)
        lut = np.asarray(result.lut, dtype=np.float64)

        peak = max(histogram.max(), 1.0)
        # Both curves are rescaled to the histogram's peak to share one axis
        cumulative_scaled = cumulative / max(cumulative.max(), 1.0) * peak
        lut_scaled = lut / 255.0 * peak

        self.histogram_bars.setOpts(x=bins, height=histogram, width=0.8)
        self.cumulative_curve.setData(x=bins, y=cumulative_scaled)
        self.lut_curve.setData(x=bins, y=lut_scaled)
        self.plot_widget.setXRange(-0.5, histogram.size - 0.5, padding=0)
        self.plot_widget.setYRange(0, peak * 1.05)
        self.current_hist_data = (histogram, cumulative, lut)
        logger.debug("Histogram widget updated with %d bins", histogram.size)

    def clear_histogram(self):
        """Clears the histogram plot."""
        self.histogram_bars.setOpts(x=[], height=[])
        self.cumulative_curve.clear()
        self.lut_curve.clear()
        self.current_hist_data = None
        self.plot_widget.setYRange(0, 1)
