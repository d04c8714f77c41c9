"""
Tests for incremental SSE decoding.
"""

from parley.providers.sse import DONE_SENTINEL, SSEDecoder


class TestSSEDecoder:
    """Tests for SSEDecoder."""

    def test_single_complete_frame(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"a": 1}\n\n') == ['{"a": 1}']

    def test_frame_split_across_reads(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"text": "he') == []
        assert decoder.pending == 'data: {"text": "he'
        assert decoder.feed(b'llo"}\n') == ['{"text": "hello"}']
        assert decoder.pending == ""

    def test_every_split_point_decodes_identically(self):
        body = b'data: {"n": 1}\n\ndata: {"n": 2}\n\ndata: [DONE]\n\n'
        expected = ['{"n": 1}', '{"n": 2}', DONE_SENTINEL]

        for split in range(len(body) + 1):
            decoder = SSEDecoder()
            payloads = decoder.feed(body[:split]) + decoder.feed(body[split:])
            payloads += decoder.flush()
            assert payloads == expected, f"split at {split}"

    def test_multibyte_character_split(self):
        decoder = SSEDecoder()
        raw = 'data: {"text": "héllo 👋"}\n'.encode()
        cut = raw.index("é".encode()) + 1  # inside the two-byte sequence

        assert decoder.feed(raw[:cut]) == []
        assert decoder.feed(raw[cut:]) == ['{"text": "héllo 👋"}']

    def test_crlf_line_endings(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: one\r\n\r\ndata: two\r\n\r\n") == ["one", "two"]

    def test_crlf_split_between_reads(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: one\r") == ["one"]
        assert decoder.feed(b"\ndata: two\n") == ["two"]

    def test_bare_cr_line_endings(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: one\rdata: two\r") == ["one", "two"]

    def test_comments_and_other_fields_ignored(self):
        decoder = SSEDecoder()
        body = b": keep-alive\nevent: message\nid: 7\nretry: 100\ndata: payload\n\n"
        assert decoder.feed(body) == ["payload"]

    def test_data_without_space(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data:tight\n") == ["tight"]

    def test_only_one_leading_space_stripped(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data:   padded\n") == ["  padded"]

    def test_done_sentinel_is_returned_as_payload(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: [DONE]\n\n") == [DONE_SENTINEL]

    def test_flush_returns_unterminated_frame(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"last": true}') == []
        assert decoder.flush() == ['{"last": true}']
        assert decoder.flush() == []

    def test_flush_empty(self):
        assert SSEDecoder().flush() == []

    def test_reset_discards_partial_frame(self):
        decoder = SSEDecoder()
        decoder.feed(b'data: {"partial"')
        decoder.reset()

        assert decoder.pending == ""
        assert decoder.feed(b"data: fresh\n") == ["fresh"]

    def test_accepts_text_input(self):
        decoder = SSEDecoder()
        assert decoder.feed("data: text\n") == ["text"]
