"""
Services for the clip assembly engine.

Includes:
- Segment handling (timestamps, duration filter, proposal parsing)
- Rendering (filter graph builder, FFmpeg renderer)
- Storage (S3 / local blob stores, artifact publisher, temp reaper)
- Batch orchestration
"""

from clipforge.services.artifact_publisher import ArtifactPublisher, create_blob_store
from clipforge.services.clip_assembly_pipeline import ClipAssemblyPipeline
from clipforge.services.filter_graph import FilterGraphBuilder, build_filter_graph
from clipforge.services.local_storage_service import LocalStorageService
from clipforge.services.proposal_parser import parse_proposals, proposal_to_request
from clipforge.services.rendering_service import EngineConfig, RenderingService
from clipforge.services.s3_upload_service import S3UploadService
from clipforge.services.segment_filter import filter_segments
from clipforge.services.temp_reaper import reap_stale_files
from clipforge.services.timestamps import to_seconds, to_timestamp
from clipforge.services.video_downloader import SourceAcquirer

__all__ = [
    # Segments
    "to_seconds",
    "to_timestamp",
    "filter_segments",
    "parse_proposals",
    "proposal_to_request",
    # Rendering
    "FilterGraphBuilder",
    "build_filter_graph",
    "EngineConfig",
    "RenderingService",
    # Storage
    "ArtifactPublisher",
    "create_blob_store",
    "LocalStorageService",
    "S3UploadService",
    "SourceAcquirer",
    "reap_stale_files",
    # Orchestration
    "ClipAssemblyPipeline",
]
