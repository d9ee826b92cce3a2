"""Compile a classified set of inputs into a full ffmpeg invocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .config import EncoderConfig
from .errors import ValidationError
from .media import Classification, MediaProber
from .models import PipelineMode
from .playlist import PlaylistBuilder, existing_files, remove_files

logger = logging.getLogger(__name__)

CONCAT_OPTIONS = ["-f", "concat", "-safe", "0"]
VIDEO_PAD = "vout"
AUDIO_PAD = "aout"


@dataclass
class InputStage:
    """One ``-i`` source together with its own read-rate policy."""

    role: str
    source: str
    options: List[str] = field(default_factory=list)
    realtime: bool = False
    loop: bool = False

    def args(self) -> List[str]:
        args: List[str] = []
        if self.loop:
            args.extend(["-stream_loop", "-1"])
        if self.realtime:
            args.append("-re")
        args.extend(self.options)
        args.extend(["-i", self.source])
        return args


@dataclass
class PipelineSpec:
    mode: PipelineMode
    inputs: List[InputStage]
    filter_graph: str
    output_options: List[str]
    destination: str
    fps: int
    video_bitrate: str
    artifacts: List[str] = field(default_factory=list)

    @property
    def keyframe_interval(self) -> int:
        return self.fps * 2

    def command(self, ffmpeg_path: str) -> List[str]:
        args = [
            ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel", "error",
            "-nostats",
            "-progress", "pipe:1",
        ]
        for stage in self.inputs:
            args.extend(stage.args())
        args.extend(["-filter_complex", self.filter_graph])
        args.extend(["-map", f"[{VIDEO_PAD}]", "-map", f"[{AUDIO_PAD}]"])
        args.extend(self.output_options)
        args.append(self.destination)
        return args


@dataclass
class _Inputs:
    stages: List[InputStage]
    video_index: int
    audio_index: int
    fps: int
    video_bitrate: str
    shortest: bool


class PipelineCompiler:
    """Mode-dispatching compiler: build inputs, then filter graph, then encode options."""

    def __init__(self, config: EncoderConfig, playlists: PlaylistBuilder, prober: MediaProber):
        self.config = config
        self.playlists = playlists
        self.prober = prober

    def compile(
        self,
        session_id: str,
        classification: Classification,
        destination: str,
        loop: bool,
    ) -> PipelineSpec:
        if not destination:
            raise ValidationError("RTMP destination is empty.")

        handlers = {
            PipelineMode.VIDEO: self._video_inputs,
            PipelineMode.STATIC_AUDIO: self._static_audio_inputs,
            PipelineMode.SLIDESHOW: self._slideshow_inputs,
            PipelineMode.HYBRID: self._hybrid_inputs,
        }
        artifacts: List[str] = []
        try:
            inputs = handlers[classification.mode](session_id, classification, loop, artifacts)
            if not inputs.stages:
                raise ValidationError("No usable input could be built.")
            graph = self.build_filter_graph(inputs.video_index, inputs.audio_index, inputs.fps)
            output = self.build_output_options(inputs.fps, inputs.video_bitrate, inputs.shortest)
        except Exception:
            remove_files(artifacts)
            raise

        return PipelineSpec(
            mode=classification.mode,
            inputs=inputs.stages,
            filter_graph=graph,
            output_options=output,
            destination=destination,
            fps=inputs.fps,
            video_bitrate=inputs.video_bitrate,
            artifacts=artifacts,
        )

    # -- input stages -----------------------------------------------------

    def _video_inputs(self, session_id: str, c: Classification, loop: bool, artifacts: List[str]) -> _Inputs:
        stage, has_audio = self._driving_video(session_id, c.videos, loop, artifacts)
        stages = [stage]
        audio_index = 0
        if not has_audio:
            logger.info("No audio track in %s, injecting silence.", stage.source)
            stages.append(self._silence())
            audio_index = 1
        return _Inputs(
            stages=stages,
            video_index=0,
            audio_index=audio_index,
            fps=self.config.motion_fps,
            video_bitrate=self.config.motion_video_bitrate,
            shortest=not has_audio,
        )

    def _static_audio_inputs(self, session_id: str, c: Classification, loop: bool, artifacts: List[str]) -> _Inputs:
        fps = self.config.static_fps
        audio = self._audio_playlist(session_id, c.audios, loop, artifacts)
        return _Inputs(
            stages=[self._still_visual(c.cover_image, fps), audio],
            video_index=0,
            audio_index=1,
            fps=fps,
            video_bitrate=self.config.static_video_bitrate,
            shortest=True,
        )

    def _slideshow_inputs(self, session_id: str, c: Classification, loop: bool, artifacts: List[str]) -> _Inputs:
        fps = self.config.static_fps
        images = existing_files(c.images)
        if not images:
            raise ValidationError("None of the slideshow images exist on disk.")
        if len(images) == 1:
            visual = self._still_visual(images[0], fps)
            if not loop:
                visual.options.extend(["-t", str(self.config.slide_duration)])
        else:
            manifest = self.playlists.build_slideshow(session_id, images, loop, self.config.slide_duration)
            artifacts.append(manifest.path)
            visual = InputStage(
                "visual", manifest.path, options=list(CONCAT_OPTIONS), realtime=True, loop=manifest.rewind
            )
        return _Inputs(
            stages=[visual, self._silence()],
            video_index=0,
            audio_index=1,
            fps=fps,
            video_bitrate=self.config.static_video_bitrate,
            shortest=True,
        )

    def _hybrid_inputs(self, session_id: str, c: Classification, loop: bool, artifacts: List[str]) -> _Inputs:
        video, _ = self._driving_video(session_id, c.videos[:1], loop, artifacts, probe_audio=False)
        audio = self._audio_playlist(session_id, c.audios, loop, artifacts)
        return _Inputs(
            stages=[video, audio],
            video_index=0,
            audio_index=1,
            fps=self.config.motion_fps,
            video_bitrate=self.config.motion_video_bitrate,
            shortest=True,
        )

    def _driving_video(
        self,
        session_id: str,
        videos: List[str],
        loop: bool,
        artifacts: List[str],
        probe_audio: bool = True,
    ) -> Tuple[InputStage, bool]:
        """The timing master: always read at native rate."""
        present = existing_files(videos)
        if not present:
            raise ValidationError("None of the video files exist on disk.")
        if len(present) == 1:
            stage = InputStage("video", present[0], realtime=True, loop=loop)
        else:
            durations = [self.prober.duration(path) for path in present] if loop else None
            manifest = self.playlists.build(session_id, "video", present, loop, durations)
            artifacts.append(manifest.path)
            stage = InputStage(
                "video", manifest.path, options=list(CONCAT_OPTIONS), realtime=True, loop=manifest.rewind
            )
        # The concat demuxer takes its stream layout from the first file.
        has_audio = self.prober.has_audio(present[0]) if probe_audio else False
        return stage, has_audio

    def _audio_playlist(self, session_id: str, audios: List[str], loop: bool, artifacts: List[str]) -> InputStage:
        """The slave track: never rate limited, pulled as fast as the video master needs."""
        present = existing_files(audios)
        if not present:
            raise ValidationError("None of the audio files exist on disk.")
        if len(present) == 1:
            return InputStage("audio", present[0], realtime=False, loop=loop)
        durations = [self.prober.duration(path) for path in present] if loop else None
        manifest = self.playlists.build(session_id, "audio", present, loop, durations)
        artifacts.append(manifest.path)
        return InputStage("audio", manifest.path, options=list(CONCAT_OPTIONS), realtime=False, loop=manifest.rewind)

    def _still_visual(self, image: Optional[str], fps: int) -> InputStage:
        if image and existing_files([image]):
            return InputStage(
                "visual", image, options=["-loop", "1", "-framerate", str(fps)], realtime=True
            )
        if image:
            logger.warning("Cover image %s missing, falling back to a black frame.", image)
        color = f"color=c=black:s={self.config.width}x{self.config.height}:r={fps}"
        return InputStage("visual", color, options=["-f", "lavfi"], realtime=True)

    def _silence(self) -> InputStage:
        source = f"anullsrc=channel_layout=stereo:sample_rate={self.config.audio_sample_rate}"
        return InputStage("silence", source, options=["-f", "lavfi"], realtime=False)

    # -- filter graph and encoding ---------------------------------------

    def build_filter_graph(self, video_index: int, audio_index: int, fps: int) -> str:
        width, height = self.config.width, self.config.height
        rate = self.config.audio_sample_rate
        video = ",".join([
            f"scale=w='min({width},iw)':h='min({height},ih)'"
            ":force_original_aspect_ratio=decrease:force_divisible_by=2",
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:color=black",
            "setsar=1",
            f"fps={fps}",
            "format=yuv420p",
            "setpts=PTS-STARTPTS",
        ])
        audio = ",".join([
            f"aresample={rate}:async=1",
            f"aformat=sample_fmts=fltp:sample_rates={rate}:channel_layouts=stereo",
            "asetpts=N/SR/TB",
        ])
        return f"[{video_index}:v]{video}[{VIDEO_PAD}];[{audio_index}:a]{audio}[{AUDIO_PAD}]"

    def build_output_options(self, fps: int, video_bitrate: str, shortest: bool) -> List[str]:
        keyint = str(self.config.keyframe_interval(fps))
        options = [
            "-c:v", "libx264",
            "-preset", self.config.preset,
            "-tune", "zerolatency",
            "-r", str(fps),
            "-g", keyint,
            "-keyint_min", keyint,
            "-sc_threshold", "0",
            "-b:v", video_bitrate,
            "-maxrate", video_bitrate,
            "-bufsize", self.config.bufsize(video_bitrate),
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", self.config.audio_bitrate,
            "-ar", str(self.config.audio_sample_rate),
            "-ac", "2",
        ]
        if shortest:
            options.append("-shortest")
        options.extend(["-f", "flv", "-flvflags", "no_duration_filesize"])
        return options
