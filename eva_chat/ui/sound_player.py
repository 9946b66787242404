from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from PySide6.QtCore import QObject, QUrl, Signal
from PySide6.QtMultimedia import QAudioOutput, QMediaPlayer

from ..sounds import SOUND_PATTERNS, render_wav

logger = logging.getLogger(__name__)


class SoundPlayer(QObject):
    """Plays the synthesized notification tones.

    Each tone is rendered once per session into a private cache directory and
    replayed from there; the directory is removed by ``close()``.
    """

    error = Signal(str)

    def __init__(self, volume: float = 0.5, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._volume = volume
        self._cache_dir: tempfile.TemporaryDirectory | None = None
        self._files: dict[str, Path] = {}

        self._output = QAudioOutput(self)
        self._output.setVolume(1.0)
        self._player = QMediaPlayer(self)
        self._player.setAudioOutput(self._output)
        self._player.errorOccurred.connect(self._on_error)

    def play(self, kind: str) -> None:
        if kind not in SOUND_PATTERNS:
            logger.warning("Unknown sound: %s", kind)
            return
        try:
            path = self._file_for(kind)
        except OSError as exc:
            logger.warning("Cannot prepare sound %s: %s", kind, exc)
            return
        # 連続通知では前の音を打ち切って鳴らし直す
        self._player.stop()
        self._player.setSource(QUrl.fromLocalFile(str(path)))
        self._player.play()

    def close(self) -> None:
        self._player.stop()
        self._player.setSource(QUrl())
        self._files.clear()
        if self._cache_dir is not None:
            self._cache_dir.cleanup()
            self._cache_dir = None

    def _file_for(self, kind: str) -> Path:
        path = self._files.get(kind)
        if path is not None and path.exists():
            return path
        if self._cache_dir is None:
            self._cache_dir = tempfile.TemporaryDirectory(prefix="eva-sounds-")
        path = Path(self._cache_dir.name) / f"{kind}.wav"
        path.write_bytes(render_wav(kind, self._volume))
        self._files[kind] = path
        return path

    def _on_error(self, error) -> None:  # type: ignore[override]
        if error == QMediaPlayer.NoError:
            return
        self.error.emit(self._player.errorString())
