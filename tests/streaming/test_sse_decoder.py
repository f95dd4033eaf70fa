import asyncio
import unittest

from chat_stream_client.streaming.sse_decoder import decode_sse


async def _chunks(*parts):
    for part in parts:
        yield part


def _decode(*parts) -> list[dict]:
    async def collect():
        return [payload async for payload in decode_sse(_chunks(*parts))]

    return asyncio.run(collect())


class DecodeSseTests(unittest.TestCase):
    def test_decodes_complete_data_lines(self) -> None:
        payloads = _decode(
            b'data: {"type": "token", "content": "Hi"}\n',
            b'data: {"type": "token", "content": " there"}\n',
            b'data: {"type": "done"}\n',
        )
        self.assertEqual(
            [
                {"type": "token", "content": "Hi"},
                {"type": "token", "content": " there"},
                {"type": "done"},
            ],
            payloads,
        )

    def test_same_payloads_however_the_body_is_chunked(self) -> None:
        body = (
            'data: {"type": "token", "content": "Hel"}\n'
            'data: {"type": "token", "content": "lo ünï"}\r\n'
            "\n"
            'data: {"type": "done"}\n'
        ).encode("utf-8")
        expected = _decode(body)

        for size in (1, 2, 3, 5, 7, 64):
            chunks = [body[i:i + size] for i in range(0, len(body), size)]
            self.assertEqual(expected, _decode(*chunks), f"chunk size {size}")
        self.assertEqual(3, len(expected))
        self.assertEqual("lo ünï", expected[1]["content"])

    def test_multibyte_character_split_across_chunks(self) -> None:
        encoded = 'data: {"type": "token", "content": "€"}\n'.encode("utf-8")
        split_at = encoded.index("€".encode("utf-8")) + 1
        payloads = _decode(encoded[:split_at], encoded[split_at:])
        self.assertEqual([{"type": "token", "content": "€"}], payloads)

    def test_malformed_and_foreign_lines_are_skipped(self) -> None:
        payloads = _decode(
            b'data: {"type": "token", "content": "A"}\n',
            b"data: {not json\n",
            b": keep-alive comment\n",
            b"event: message\n",
            b"data: [1, 2]\n",
            b"data: \n",
            b'data: {"type": "token", "content": "B"}\n',
        )
        self.assertEqual(["A", "B"], [p["content"] for p in payloads])

    def test_trailing_partial_line_is_discarded(self) -> None:
        payloads = _decode(
            b'data: {"type": "token", "content": "kept"}\n',
            b'data: {"type": "token", "content": "lost"}',
        )
        self.assertEqual([{"type": "token", "content": "kept"}], payloads)

    def test_accepts_text_chunks(self) -> None:
        payloads = _decode('data: {"type": "do', 'ne"}\n')
        self.assertEqual([{"type": "done"}], payloads)


if __name__ == "__main__":
    unittest.main()
