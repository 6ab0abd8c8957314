"""Pydantic V2 models for performance metrics API responses.

This module defines the data models used for the metrics snapshot, change
events, renderer stat ingestion and WebSocket broadcasts. Snapshot models
are frozen: consumers get an immutable view of one aggregation pass.
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class MemoryModel(BaseModel):
    """Heap sizes in bytes"""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    used: float = 0.0
    total: float = 0.0
    limit: float = 0.0


class RenderInfoModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    frame: int = 0
    calls: int = 0
    triangles: int = 0
    points: int = 0
    lines: int = 0


class RendererMemoryModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    geometries: int = 0
    textures: int = 0


class RendererInfoModel(BaseModel):
    """Raw renderer counters as last reported by the host"""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    memory: RendererMemoryModel = Field(default_factory=RendererMemoryModel)
    render: RenderInfoModel = Field(default_factory=RenderInfoModel)
    programs: int = 0


class ChangeEventModel(BaseModel):
    """A significant change of one metric between consecutive values"""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    timestamp: float
    metric: str
    old_value: float
    new_value: float
    delta: float
    delta_percent: float
    severity: str


class MetricsSnapshotModel(BaseModel):
    """Root envelope for all metrics data; every field is always numeric."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    timestamp: float = 0.0
    frame_count: int = 0

    # Frame timing
    fps: float = 0.0
    average_fps: float = 0.0
    ms: float = 0.0
    frame_time: float = 0.0
    cpu_time: float = 0.0

    # Memory
    memory: MemoryModel = Field(default_factory=MemoryModel)
    memory_leaks: bool = False

    # Renderer counters
    draw_calls: float = 0.0
    triangles: float = 0.0
    geometries: float = 0.0
    textures: float = 0.0
    programs: float = 0.0
    renderer_info: RendererInfoModel = Field(default_factory=RendererInfoModel)

    network_latency: float = 0.0

    # XR
    xr_presenting: bool = False
    xr_session_init_time: float = 0.0
    motion_to_photon_delay: float = 0.0
    controller_input_lag: float = 0.0
    xr_frame_rate: float = 0.0
    xr_predicted_display_time: float = 0.0

    # GPU
    gpu_timing_mode: str = "unprobed"
    gpu_time: float = 0.0
    gpu_frame_time: float = 0.0
    gpu_fragment_complexity: float = 0.0
    gpu_vertex_complexity: float = 0.0
    gpu_memory_usage: float = 0.0
    shader_compile_time: float = 0.0
    texture_bindings: float = 0.0
    buffer_bindings: float = 0.0

    # Advanced timing
    cpu_frame_time: float = 0.0
    render_call_duration: float = 0.0
    script_time: float = 0.0
    garbage_collection_time: float = 0.0

    severity: Dict[str, str] = Field(default_factory=dict)
    recent_changes: List[ChangeEventModel] = Field(default_factory=list)


class RendererStatsModel(BaseModel):
    """Renderer counters pushed by the host once per frame"""
    model_config = ConfigDict(from_attributes=True)

    draw_calls: int = Field(default=0, ge=0)
    triangles: int = Field(default=0, ge=0)
    points: int = Field(default=0, ge=0)
    lines: int = Field(default=0, ge=0)
    geometries: int = Field(default=0, ge=0)
    textures: int = Field(default=0, ge=0)
    programs: int = Field(default=0, ge=0)
    frame: int = Field(default=0, ge=0)


class ChangeEventsResponse(BaseModel):
    events: List[ChangeEventModel]
    count: int


class PerformanceHealthModel(BaseModel):
    """Lightweight health check response"""
    model_config = ConfigDict(from_attributes=True)

    metrics_enabled: bool
    broadcaster_running: bool
    latency_probe_running: bool
    render_loop_running: bool
    gpu_timing_mode: str
    xr_presenting: bool
    frame_count: int
    version: str
