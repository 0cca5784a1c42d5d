import json
import unittest

from models.agent_output import (
    AgentError,
    extract_json,
    extract_log_entries,
    parse_agent_output,
)
from shared.types import AgentLogType

VALID_OUTPUT = {
    "title": "Nikon F3 35mm Film Camera Good Condition",
    "description": "Selling my old Nikon.",
    "suggestedPrice": 150,
    "priceRangeLow": 120,
    "priceRangeHigh": 180,
    "category": "Electronics",
    "condition": "Good",
    "brand": "Nikon",
    "model": "F3",
    "researchNotes": "Strong demand.",
    "comparables": [
        {
            "title": "Nikon F3 body",
            "price": 140,
            "source": "eBay Sold",
            "soldDate": "2025-01-04",
        }
    ],
}


class ExtractJsonTest(unittest.TestCase):

    def test_plain_json(self):
        self.assertEqual(extract_json('  {"a": 1}  '), {"a": 1})

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nDone.'
        self.assertEqual(extract_json(text), {"a": 1})

    def test_json_surrounded_by_prose(self):
        text = 'The listing is {"a": {"b": 2}} as requested.'
        self.assertEqual(extract_json(text), {"a": {"b": 2}})

    def test_no_json(self):
        with self.assertRaisesRegex(AgentError, "Could not extract JSON"):
            extract_json("no braces at all")

    def test_bad_fenced_json(self):
        with self.assertRaisesRegex(AgentError, "Could not parse JSON"):
            extract_json("```json\n{not json}\n```")


class ParseAgentOutputTest(unittest.TestCase):

    def test_valid_output(self):
        output = parse_agent_output(VALID_OUTPUT)
        self.assertEqual(output.suggested_price, 150)
        self.assertEqual(output.model, "F3")
        self.assertEqual(
            output.comparables_json(),
            [
                {
                    "title": "Nikon F3 body",
                    "price": 140,
                    "source": "eBay Sold",
                    "soldDate": "2025-01-04",
                }
            ],
        )

    def test_model_and_comparables_optional(self):
        payload = {k: v for k, v in VALID_OUTPUT.items() if k not in ("model", "comparables")}
        output = parse_agent_output(payload)
        self.assertIsNone(output.model)
        self.assertEqual(output.comparables, [])

    def test_invalid_condition(self):
        with self.assertRaisesRegex(AgentError, "Agent output validation failed"):
            parse_agent_output(dict(VALID_OUTPUT, condition="Mint"))

    def test_missing_field(self):
        payload = dict(VALID_OUTPUT)
        del payload["title"]
        with self.assertRaisesRegex(AgentError, "Agent output validation failed"):
            parse_agent_output(payload)

    def test_parses_extracted_text(self):
        text = "```json\n" + json.dumps(VALID_OUTPUT) + "\n```"
        self.assertEqual(parse_agent_output(extract_json(text)).brand, "Nikon")


class ExtractLogEntriesTest(unittest.TestCase):

    def test_maps_tool_use_and_text(self):
        entries = extract_log_entries(
            [
                {"type": "text", "text": "x" * 300},
                {"type": "tool_use", "name": "WebSearch", "input": {"query": "nikon f3 sold"}},
                {"type": "tool_use", "name": "WebFetch", "input": {"url": "https://ebay.com/1"}},
                {"type": "tool_use", "name": "Write", "input": {"file_path": "/out.json"}},
                {"type": "tool_use", "name": "Read", "input": {}},
                {"type": "tool_result", "content": "ignored"},
            ]
        )
        self.assertEqual(
            [e.type for e in entries],
            [AgentLogType.TEXT, AgentLogType.SEARCH, AgentLogType.FETCH, AgentLogType.WRITE],
        )
        self.assertEqual(len(entries[0].content), 200)
        self.assertEqual(entries[1].content, "Searching: nikon f3 sold")
        self.assertEqual(entries[2].content, "Fetching: https://ebay.com/1")
        self.assertEqual(entries[3].content, "Writing listing output")
        self.assertEqual(len({e.ts for e in entries}), 1)

    def test_missing_query_uses_prefix(self):
        entries = extract_log_entries(
            [{"type": "tool_use", "name": "WebSearch", "input": {"query": None}}]
        )
        self.assertEqual(entries[0].content, "Searching")

    def test_empty_text_skipped(self):
        self.assertEqual(extract_log_entries([{"type": "text", "text": ""}]), [])


if __name__ == "__main__":
    unittest.main()
