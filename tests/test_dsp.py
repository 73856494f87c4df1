import numpy as np
import pytest

from dsp import CONTEXT_RUNNING, CONTEXT_SUSPENDED, AudioContext, peaking_coeffs
from errors import ValidationError


class Element:
    def __init__(self):
        self.source_node = None

    def attach_source(self, node):
        self.source_node = node


def sine(freq, sr=44100, n=4096, channels=2):
    t = np.arange(n) / sr
    mono = np.sin(2 * np.pi * freq * t).astype(np.float32) * 0.5
    return np.repeat(mono[:, None], channels, axis=1)


def test_context_starts_suspended_and_renders_silence(qapp):
    ctx = AudioContext()
    source = ctx.create_media_element_source(Element())
    source.connect(ctx.destination)
    assert ctx.state == CONTEXT_SUSPENDED
    out = ctx.render(source, sine(440))
    assert not out.any()

    ctx.resume()
    assert ctx.state == CONTEXT_RUNNING
    x = sine(440)
    assert np.allclose(ctx.render(source, x), x)


def test_source_is_created_once_per_element(qapp):
    ctx = AudioContext()
    el = Element()
    node = ctx.create_media_element_source(el)
    assert el.source_node is node
    with pytest.raises(ValidationError):
        ctx.create_media_element_source(el)


def test_closed_context_cannot_resume(qapp):
    ctx = AudioContext()
    ctx.close()
    with pytest.raises(ValidationError):
        ctx.resume()


def test_nodes_from_different_contexts_do_not_connect(qapp):
    a, b = AudioContext(), AudioContext()
    with pytest.raises(ValidationError):
        a.create_analyser().connect(b.destination)


def test_flat_peaking_filter_is_transparent(qapp):
    ctx = AudioContext()
    flt = ctx.create_peaking_filter(1000.0, 1.0, 0.0)
    x = sine(1000)
    assert np.array_equal(flt.process(x), x)


def test_peaking_filter_boosts_its_band(qapp):
    ctx = AudioContext()
    flt = ctx.create_peaking_filter(1000.0, 1.0, 12.0)
    x = sine(1000, n=44100)
    y = flt.process(x)
    tail = slice(22050, None)
    gain_db = 20 * np.log10(np.abs(y[tail, 0]).max() / np.abs(x[tail, 0]).max())
    assert gain_db == pytest.approx(12.0, abs=0.5)


def test_peaking_coeffs_unity_at_zero_gain():
    b0, b1, b2, a1, a2 = peaking_coeffs(1000.0, 0.0, 1.0, 44100)
    assert (b0, b1, b2) == pytest.approx((1.0, a1, a2))


def test_analyser_defaults_and_spectrum(qapp):
    ctx = AudioContext()
    analyser = ctx.create_analyser()
    assert analyser.fft_size == 256
    assert analyser.frequency_bin_count == 128
    x = sine(44100 / 256 * 16, n=512)
    assert analyser.process(x) is x
    data = analyser.get_byte_frequency_data()
    assert data.shape == (128,)
    assert data.dtype == np.uint8
    assert int(np.argmax(data)) == 16


def test_analyser_rejects_bad_fft_size(qapp):
    analyser = AudioContext().create_analyser()
    with pytest.raises(ValidationError):
        analyser.fft_size = 300
