"""
Plotly figures for the dashboard
"""

import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

import config


def _times(timestamps, tz=None):
    return pd.to_datetime(pd.Series(timestamps, dtype="float64"), unit="s", utc=True).dt.tz_convert(
        tz or config.TIMEZONE
    )


def moisture_figure(readings, threshold=None, tz=None):
    """Moisture history with the valve status underneath"""
    df = pd.DataFrame(readings, columns=["timestamp", "moisture", "valveStatus"])
    df["time"] = _times(df["timestamp"], tz)
    df["valve_num"] = df["valveStatus"].apply(lambda x: 1 if x == "ON" else 0)

    fig = make_subplots(
        rows=2, cols=1,
        subplot_titles=("📊 Moisture Trend", "🚰 Valve Activity"),
        row_heights=[0.6, 0.4],
        vertical_spacing=0.18
    )

    # Highlight latest point
    marker_sizes = [5] * (len(df) - 1) + [12] if len(df) else []
    marker_colors = ['#2E7D32'] * (len(df) - 1) + ['#FF4081'] if len(df) else []

    fig.add_trace(
        go.Scatter(
            x=df["time"],
            y=df["moisture"],
            mode="lines+markers",
            name="Moisture",
            line=dict(color="#2E7D32", width=3),
            marker=dict(size=marker_sizes, color=marker_colors, line=dict(width=2, color='white')),
            fill='tozeroy',
            fillcolor='rgba(46, 125, 50, 0.1)',
            hovertemplate="<b>%{y:.1f}%</b><br>%{x}<extra></extra>"
        ),
        row=1, col=1
    )

    if threshold is not None:
        fig.add_hline(
            y=threshold,
            line_dash="dash",
            line_color="#F44336",
            line_width=2,
            annotation_text=f"Threshold ({threshold}%)",
            annotation_position="right",
            row=1, col=1
        )

    fig.add_trace(
        go.Scatter(
            x=df["time"],
            y=df["valve_num"],
            mode="markers+lines",
            name="Valve Status",
            line=dict(color="#1976D2", width=2, shape='hv'),
            marker=dict(size=8, color='#1976D2'),
        ),
        row=2, col=1
    )

    fig.update_yaxes(title_text="Moisture (%)", range=[0, 100], row=1, col=1)
    fig.update_yaxes(title_text="Status", ticktext=["OFF", "ON"], tickvals=[0, 1], row=2, col=1)
    fig.update_layout(height=700, showlegend=True, hovermode="x unified")
    return fig


def trend_figure(trends, tz=None):
    """Moisture change rate (% per hour) between readings"""
    df = pd.DataFrame(trends, columns=["timestamp", "rate"])
    colors = ["#4CAF50" if r >= 0 else "#F44336" for r in df["rate"]]

    fig = go.Figure()
    fig.add_trace(
        go.Bar(
            x=_times(df["timestamp"], tz),
            y=df["rate"],
            name="Rate",
            marker_color=colors,
            hovertemplate="<b>%{y:.2f} %/h</b><br>%{x}<extra></extra>"
        )
    )
    fig.update_layout(
        title="📈 Moisture Change Rate",
        xaxis_title="Time",
        yaxis_title="% per hour",
        height=400
    )
    return fig


def events_figure(events, tz=None):
    """Duration and moisture gain of each watering event"""
    df = pd.DataFrame(events, columns=["start", "duration_minutes", "effectiveness_percent"])
    starts = _times(df["start"], tz)

    fig = go.Figure()
    fig.add_trace(go.Bar(x=starts, y=df["duration_minutes"], name="Duration (min)", marker_color="#1976D2"))
    fig.add_trace(go.Bar(x=starts, y=df["effectiveness_percent"], name="Moisture gain (%)", marker_color="#4CAF50"))
    fig.update_layout(
        title="🚿 Watering Events",
        barmode="group",
        xaxis_title="Start",
        height=400
    )
    return fig
