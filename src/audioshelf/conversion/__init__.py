"""Background conversion of legacy audio formats to AAC/M4A."""

from audioshelf.conversion.load import SystemLoadProbe
from audioshelf.conversion.model import ConversionStatus, ConversionTask
from audioshelf.conversion.orchestrator import ConversionOrchestrator
from audioshelf.conversion.registry import ConversionRegistry
from audioshelf.conversion.transcoder import CodecParams, FFmpegTranscoder, Transcoder, convert_file

__all__ = [
    "CodecParams",
    "ConversionOrchestrator",
    "ConversionRegistry",
    "ConversionStatus",
    "ConversionTask",
    "FFmpegTranscoder",
    "SystemLoadProbe",
    "Transcoder",
    "convert_file",
]
