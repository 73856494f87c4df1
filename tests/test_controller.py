import pytest

from controller import PlaybackController
from equalizer import EqualizerGraph
from errors import MediaError, MediaErrorCode, NotFoundError, ValidationError
from models import GraphState, PlaybackState


@pytest.fixture
def controller(qapp, catalog, songs, element, engine_settings):
    equalizer = EqualizerGraph(store=engine_settings)
    return PlaybackController(catalog, element, equalizer, settings=engine_settings)


def test_starts_idle_and_play_without_queue_is_noop(controller, element):
    assert controller.state is PlaybackState.IDLE
    controller.play()
    assert controller.state is PlaybackState.IDLE
    assert element.play_calls == 0
    assert controller.equalizer.state is GraphState.UNINITIALIZED


def test_set_song_moves_to_paused(controller, element):
    changed = []
    controller.songChanged.connect(changed.append)
    controller.set_song("b")
    assert controller.state is PlaybackState.PAUSED
    assert controller.current_song_id == "b"
    assert element.src.replace("\\", "/").endswith("Vleer/Songs/b.webm")
    assert [s.id for s in changed] == ["b"]


def test_set_unknown_song_changes_nothing(controller, element):
    controller.set_song("a")
    with pytest.raises(NotFoundError):
        controller.set_song("ghost")
    assert controller.current_song_id == "a"
    assert controller.state is PlaybackState.PAUSED
    assert len(element.loads) == 1


def test_play_builds_graph_and_applies_volume(controller, element):
    controller.set_volume(50)
    controller.set_song("a")
    controller.play()
    assert controller.state is PlaybackState.PLAYING
    assert controller.equalizer.state is GraphState.ACTIVE
    assert element.volume == pytest.approx(0.0316, abs=1e-4)
    assert not element.paused


def test_play_from_idle_starts_queue_head(controller, element):
    controller.set_queue(["c", "a"])
    controller.play()
    assert controller.current_song_id == "c"
    assert controller.state is PlaybackState.PLAYING


def test_play_while_playing_is_noop(controller, element):
    controller.set_song("a")
    controller.play()
    controller.play()
    assert element.play_calls == 1


def test_pause_and_play_pause(controller, element):
    controller.pause()
    assert controller.state is PlaybackState.IDLE

    controller.set_song("a")
    controller.play_pause()
    assert controller.state is PlaybackState.PLAYING
    controller.play_pause()
    assert controller.state is PlaybackState.PAUSED
    assert element.paused


def test_volume_extremes_and_persistence(controller, element, engine_settings):
    levels = []
    controller.volumeChanged.connect(levels.append)
    controller.set_volume(0)
    assert element.volume == 0.0
    controller.set_volume(100)
    assert element.volume == 1.0
    controller.set_volume(150)
    assert controller.volume == 100
    assert engine_settings.volume() == 100
    assert levels == [0, 100, 100]


def test_set_queue_rejects_unknown_ids(controller):
    controller.set_queue(["a", "b"])
    with pytest.raises(NotFoundError):
        controller.set_queue(["a", "ghost"])
    assert controller.queue.ids == ("a", "b")


def test_skip_wraps_around(controller):
    controller.set_queue(["a", "b", "c"])
    controller.play()
    for _ in range(3):
        controller.skip()
    assert controller.current_song_id == "a"
    assert controller.state is PlaybackState.PLAYING


def test_rewind_restarts_after_threshold(controller, element):
    controller.set_queue(["a", "b", "c"])
    controller.play()
    element.current_time = 5.0
    controller.rewind()
    assert controller.current_song_id == "a"
    assert element.seeks == [0.0]


def test_rewind_early_goes_to_previous_with_wraparound(controller, element):
    controller.set_queue(["a", "b", "c"])
    controller.play()
    element.current_time = 1.0
    controller.rewind()
    assert controller.current_song_id == "c"
    assert controller.state is PlaybackState.PLAYING


def test_track_end_advances_queue(controller, element, qapp):
    controller.set_queue(["a", "b", "c"])
    controller.play()
    element.finish()
    assert controller.current_song_id == "a"
    qapp.processEvents()
    assert controller.current_song_id == "b"
    assert controller.state is PlaybackState.PLAYING


def test_each_completion_is_handled_once(controller, element, qapp):
    controller.set_queue(["a", "b", "c"])
    controller.play()
    element.finish()
    element.finish()
    qapp.processEvents()
    assert controller.current_song_id == "c"
    assert [p.rsplit("/", 1)[-1] for p in (s.replace("\\", "/") for s in element.loads)] == [
        "a.webm", "b.webm", "c.webm",
    ]


def test_completion_during_completion_is_not_interleaved(controller, element, qapp):
    controller.set_queue(["a", "b", "c"])
    controller.play()
    seen_after_nested = []

    def on_song(song):
        if song is not None and song.id == "b" and not seen_after_nested:
            controller._on_track_ended()
            seen_after_nested.append(controller.current_song_id)

    controller.songChanged.connect(on_song)
    element.finish()
    qapp.processEvents()
    assert seen_after_nested == ["b"]
    assert controller.current_song_id == "c"
    assert controller.state is PlaybackState.PLAYING


def test_track_end_without_queue_goes_idle(controller, element, qapp):
    controller.set_song("a")
    controller.play()
    element.finish()
    qapp.processEvents()
    assert controller.state is PlaybackState.IDLE
    assert controller.current_song_id is None


def test_media_error_pauses_and_is_forwarded(controller, element):
    errors = []
    controller.mediaError.connect(errors.append)
    controller.set_song("a")
    controller.play()
    error = MediaError(MediaErrorCode.DECODE)
    element.errorOccurred.emit(error)
    assert controller.state is PlaybackState.PAUSED
    assert errors == [error]


def test_media_error_while_idle_stays_idle(controller, element):
    element.errorOccurred.emit(MediaError(MediaErrorCode.SRC_NOT_SUPPORTED))
    assert controller.state is PlaybackState.IDLE


def test_current_and_queued_songs_cannot_be_removed(controller, catalog):
    controller.set_queue(["b"])
    controller.set_song("a")
    with pytest.raises(ValidationError):
        catalog.remove_song("a")
    with pytest.raises(ValidationError):
        catalog.remove_song("b")
    catalog.remove_song("c")
    assert not catalog.has_song("c")


def test_eq_gain_reaches_live_filter(controller, engine_settings):
    controller.set_song("a")
    controller.play()
    controller.set_eq_gain(3, -6.0)
    handle = controller.equalizer.handle
    assert handle.filters[3].gain == -6.0
    assert engine_settings.eq_settings().gain(3) == -6.0


def test_apply_eq_settings_uses_stored_gains(controller, engine_settings):
    stored = engine_settings.eq_settings()
    stored.set_gain(9, 4.0)
    engine_settings.set_eq_settings(stored)
    controller.apply_eq_settings()
    assert controller.equalizer.settings.gain(9) == 4.0


def test_snapshot(controller):
    controller.set_queue(["a", "b"])
    controller.play()
    snap = controller.snapshot()
    assert snap.state is PlaybackState.PLAYING
    assert snap.current_song_id == "a"
    assert snap.queue == ("a", "b")
    assert snap.cursor == 0


def test_play_that_fails_synchronously_stays_paused(controller, element, monkeypatch):
    errors = []
    controller.mediaError.connect(errors.append)
    error = MediaError(MediaErrorCode.SRC_NOT_SUPPORTED)

    def failing_play():
        element.paused = True
        element.errorOccurred.emit(error)

    monkeypatch.setattr(element, "play", failing_play)
    controller.set_song("a")
    controller.play()
    assert controller.state is PlaybackState.PAUSED
    assert errors == [error]


def test_set_song_moves_queue_cursor(controller):
    controller.set_queue(["a", "b", "c"])
    controller.set_song("b")
    assert controller.queue.cursor == 1
    controller.skip()
    assert controller.current_song_id == "c"


def test_set_song_outside_queue_keeps_cursor(controller):
    controller.set_queue(["a", "b"])
    controller.skip()
    controller.set_song("c")
    assert controller.current_song_id == "c"
    assert controller.queue.cursor == 1


def test_completions_counted_before_a_failure_are_kept(controller, monkeypatch):
    def failing_advance():
        controller._on_track_ended()
        raise RuntimeError("load failed")

    monkeypatch.setattr(controller, "_advance_after_completion", failing_advance)
    with pytest.raises(RuntimeError):
        controller._on_track_ended()
    assert controller._pending_completions == 1

    advances = []
    monkeypatch.setattr(controller, "_advance_after_completion", lambda: advances.append(True))
    controller._on_track_ended()
    assert advances == [True, True]
    assert controller._pending_completions == 0
