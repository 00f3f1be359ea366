import asyncio
import os

import pytest

from fakes import WavTranscoder, silence_frame, tone_frame, tone_frames
from protokoll.audio.segmenter import FfmpegTranscoder, Segmenter, SpeakerStream, build_ffmpeg_command
from protokoll.errors import TranscodeFailure


class FailingTranscoder(WavTranscoder):
    async def finish(self):
        await super().finish()
        raise TranscodeFailure(1, "Invalid data found when processing input")


def capture(segmenter, frames, close=False):
    async def run():
        stream = SpeakerStream("4242")
        for frame in frames:
            stream.push(frame)
        if close:
            stream.close()
        artifact = await segmenter.capture(stream)
        return stream, artifact

    return asyncio.run(run())


def test_ffmpeg_command_converts_stereo_48k_to_mono_16k(settings):
    command = build_ffmpeg_command("ffmpeg", "out.wav", settings)

    assert command[0] == "ffmpeg"
    assert command[-1] == "out.wav"
    joined = " ".join(command)
    assert "-f s16le -ar 48000 -ac 2 -i pipe:0" in joined
    assert "-ac 1 -ar 16000" in joined
    assert "-f wav" in joined


def test_speech_detection(settings):
    segmenter = Segmenter(settings)
    assert segmenter.is_speech(tone_frame())
    assert not segmenter.is_speech(silence_frame())
    assert not segmenter.is_speech(b"")


def test_utterance_ends_after_silence_timeout(settings):
    segmenter = Segmenter(settings, transcoder_factory=WavTranscoder)

    stream, artifact = capture(segmenter, tone_frames(1.0))

    assert stream.closed
    assert artifact is not None
    assert artifact.exists()
    assert artifact.speaker_id == "4242"
    assert artifact.duration_seconds == pytest.approx(1.0, abs=0.01)
    assert os.path.dirname(artifact.path) == settings.audio_dir
    assert artifact.path.endswith("-4242-mono.wav")


def test_short_utterance_is_dropped_and_removed(settings):
    segmenter = Segmenter(settings, transcoder_factory=WavTranscoder)

    _, artifact = capture(segmenter, tone_frames(0.1), close=True)

    assert artifact is None
    assert os.listdir(settings.audio_dir) == []


def test_quiet_frames_end_the_utterance(settings):
    segmenter = Segmenter(settings, transcoder_factory=WavTranscoder)
    frames = tone_frames(0.5) + [silence_frame() for _ in range(10)] + tone_frames(0.5)

    stream, artifact = capture(segmenter, frames)

    assert artifact is not None
    assert 0.5 < artifact.duration_seconds < 0.7
    assert stream.closed


def test_utterance_is_capped(settings):
    settings.max_utterance_seconds = 0.4
    segmenter = Segmenter(settings, transcoder_factory=WavTranscoder)

    _, artifact = capture(segmenter, tone_frames(1.0))

    assert artifact.duration_seconds == pytest.approx(0.4, abs=0.03)


def test_frames_after_close_are_ignored(settings):
    async def run():
        stream = SpeakerStream("1")
        stream.close()
        stream.push(tone_frame())
        return await stream.next_frame(0.01)

    assert asyncio.run(run()) is None


def test_transcode_failure_removes_partial_file(settings):
    segmenter = Segmenter(settings, transcoder_factory=FailingTranscoder)

    with pytest.raises(TranscodeFailure) as info:
        capture(segmenter, tone_frames(1.0), close=True)

    assert info.value.exit_code == 1
    assert "Invalid data" in str(info.value)
    assert os.listdir(settings.audio_dir) == []


def test_missing_ffmpeg_binary_is_a_transcode_failure(settings, tmp_path):
    settings.ffmpeg_path = str(tmp_path / "no-such-ffmpeg")
    transcoder = FfmpegTranscoder(str(tmp_path / "out.wav"), settings)

    with pytest.raises(TranscodeFailure) as info:
        asyncio.run(transcoder.start())

    assert info.value.exit_code is None


class RecordingFactory:
    def __init__(self, cls=WavTranscoder):
        self.cls = cls
        self.instances = []

    def __call__(self, path, settings):
        transcoder = self.cls(path, settings)
        self.instances.append(transcoder)
        return transcoder


class BrokenPipeTranscoder(WavTranscoder):
    async def start(self):
        await super().start()
        open(self.output_path, "wb").close()

    async def write(self, frame):
        raise RuntimeError("pipe exploded")


def test_capture_error_aborts_transcoder_and_removes_file(settings):
    factory = RecordingFactory(BrokenPipeTranscoder)
    segmenter = Segmenter(settings, transcoder_factory=factory)

    with pytest.raises(RuntimeError):
        capture(segmenter, tone_frames(0.5))

    assert factory.instances[0].aborted
    assert os.listdir(settings.audio_dir) == []


def test_cancelled_capture_aborts_transcoder(settings):
    settings.silence_seconds = 5.0
    factory = RecordingFactory()
    segmenter = Segmenter(settings, transcoder_factory=factory)

    async def run():
        stream = SpeakerStream("4242")
        stream.push(tone_frame())
        task = asyncio.get_running_loop().create_task(segmenter.capture(stream))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return stream

    stream = asyncio.run(run())

    assert stream.closed
    assert factory.instances[0].aborted
    assert os.listdir(settings.audio_dir) == []
