"""Response rendering for streaming and non-streaming requests"""
from .bleed_filter import BleedFilter
from .stream_handler import StreamingPipeline, attach_tool_tracking
from .non_streaming import NonStreamingAssembler

__all__ = ['BleedFilter', 'StreamingPipeline', 'attach_tool_tracking', 'NonStreamingAssembler']
