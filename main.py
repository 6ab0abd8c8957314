"""
XR Performance Telemetry API Server

Serves the metrics snapshot of a real-time telemetry engine for 3D/XR sessions.

Environment Variables:
    XRPERF_ENABLE_METRICS: Enable performance metrics collection (default: true)
                           Set to 'false' to disable with zero overhead
    METRICS_BROADCAST_HZ: Metrics broadcast frequency in Hz (default: 1)
    LATENCY_PROBE_INTERVAL_S: Seconds between latency probes (default: 5)
    LATENCY_SIMULATED: Use the synthetic latency policy (default: true)
    RENDER_LOOP_MODE: 'sim' drives the engine with a simulated render loop,
                      'external' waits for a host renderer (default: sim)
    SIM_TARGET_FPS: Simulated render loop frame rate (default: 60)
    HOST: Server host address (default: 0.0.0.0)
    PORT: Server port (default: 8010)
    DEBUG: Enable debug mode with auto-reload (default: false)

CLI Usage:
    python main.py

    # Simulated 90 Hz headset cadence, metrics pushed twice a second
    SIM_TARGET_FPS=90 METRICS_BROADCAST_HZ=2 python main.py
"""

import uvicorn

from xrperf.core.config import settings

if __name__ == "__main__":
    # Get configuration from settings
    port = settings.PORT
    host = settings.HOST

    print(f"Starting {settings.PROJECT_NAME} on {host}:{port}")
    print(f"Performance metrics: {'enabled' if settings.XRPERF_ENABLE_METRICS else 'disabled'}")
    print(f"Render loop mode: {settings.RENDER_LOOP_MODE}")

    # If reload is enabled, restrict watch scope to backend code only.
    reload_enabled = bool(settings.DEBUG)
    reload_dirs = None
    if reload_enabled:
        from pathlib import Path

        repo_root = Path(__file__).resolve().parent
        reload_dirs = [str(repo_root / "xrperf")]

    uvicorn.run(
        "xrperf.app:create_app",
        host=host,
        port=port,
        reload=reload_enabled,
        reload_dirs=reload_dirs,
        factory=True,
    )
