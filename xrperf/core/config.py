import os


class Settings:
    # API Settings
    PROJECT_NAME: str = "XR Performance Telemetry API"
    VERSION: str = "0.4.0"
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", 8010))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Performance Metrics Settings
    XRPERF_ENABLE_METRICS: bool = os.getenv("XRPERF_ENABLE_METRICS", "true").lower() == "true"
    METRICS_BROADCAST_HZ: float = float(os.getenv("METRICS_BROADCAST_HZ", "1"))

    # Latency probe (synthetic policy keeps the original 25-60ms display range)
    LATENCY_PROBE_INTERVAL_S: float = float(os.getenv("LATENCY_PROBE_INTERVAL_S", "5"))
    LATENCY_SIMULATED: bool = os.getenv("LATENCY_SIMULATED", "true").lower() == "true"

    # Render loop Settings
    RENDER_LOOP_MODE: str = os.getenv("RENDER_LOOP_MODE", "sim")  # "sim" or "external"
    SIM_TARGET_FPS: float = float(os.getenv("SIM_TARGET_FPS", "60"))

    # Directory Settings
    LOG_DIR: str = os.getenv("LOG_DIR", "")


settings = Settings()
