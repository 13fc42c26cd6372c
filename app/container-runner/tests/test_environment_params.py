from __future__ import annotations

import sys
import unittest
from pathlib import Path

SRC_PATH = Path(__file__).resolve().parents[1] / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from container_runner.contracts import BinaryMapping
from container_runner.environment import build_environment
from container_runner.errors import ParamsError
from container_runner.params import RunContainerParams


class EnvironmentTests(unittest.TestCase):
    def test_keypair_mode_keeps_order_and_skips_blank_names(self) -> None:
        result = build_environment(
            "keypair",
            {"values": [{"name": "A", "value": "1"}, {"name": "", "value": "x"}, {"key": "B", "value": 2}]},
        )
        self.assertEqual(["A=1", "B=2"], result.variables)
        self.assertEqual(2, result.count)

    def test_json_mode_serializes_nested_values(self) -> None:
        result = build_environment("json", '{"DEBUG": true, "CFG": {"a": 1}, "EMPTY": null}')
        self.assertEqual(["DEBUG=true", 'CFG={"a":1}', "EMPTY="], result.variables)

    def test_json_mode_rejects_invalid_documents(self) -> None:
        with self.assertRaises(ParamsError):
            build_environment("json", "{not json")
        with self.assertRaises(ParamsError):
            build_environment("json", "[1, 2]")

    def test_model_mode_parses_lines(self) -> None:
        result = build_environment("model", "# comment\nA=1\n\nB=x=y\n")
        self.assertEqual(["A=1", "B=x=y"], result.variables)

    def test_invalid_names_are_rejected(self) -> None:
        with self.assertRaises(ParamsError):
            build_environment("model", "NOVALUE")
        with self.assertRaises(ParamsError):
            build_environment("keypair", [{"name": "BAD NAME", "value": "1"}])
        with self.assertRaises(ParamsError):
            build_environment("unknown", None)


class RunContainerParamsTests(unittest.TestCase):
    def test_from_dict_applies_defaults(self) -> None:
        params = RunContainerParams.from_dict(
            {"image": " alpine:latest ", "command": "echo hello"},
            default_socket_path="/tmp/docker.sock",
        )
        self.assertEqual("alpine:latest", params.image)
        self.assertEqual("echo hello", params.command)
        self.assertEqual("/tmp/docker.sock", params.socket_path)
        self.assertEqual([], params.env_vars)
        self.assertFalse(params.binary_data_input)
        self.assertEqual("*", params.output_file_pattern)
        self.assertEqual("missing", params.pull_policy)

    def test_from_dict_reads_binary_settings_and_environment(self) -> None:
        params = RunContainerParams.from_dict(
            {
                "image": "alpine",
                "socketPath": "/custom.sock",
                "environmentJson": {"MODE": "fast"},
                "binaryDataInput": "true",
                "binaryDataOutput": True,
                "binaryFileMappings": {
                    "mappings": [{"binaryPropertyName": "data", "containerPath": "/input/data.bin"}]
                },
                "outputFilePattern": "*.txt",
                "pullPolicy": "Always",
            }
        )
        self.assertEqual("/custom.sock", params.socket_path)
        self.assertEqual(["MODE=fast"], params.env_vars)
        self.assertTrue(params.binary_data_input)
        self.assertTrue(params.binary_data_output)
        self.assertEqual([BinaryMapping("data", "/input/data.bin")], params.binary_file_mappings)
        self.assertEqual("*.txt", params.output_file_pattern)
        self.assertEqual("always", params.pull_policy)

    def test_from_dict_rejects_bad_values(self) -> None:
        with self.assertRaises(ParamsError):
            RunContainerParams.from_dict({"image": "alpine", "pullPolicy": "never"})
        with self.assertRaises(ParamsError):
            RunContainerParams.from_dict(
                {"image": "alpine", "binaryFileMappings": {"mappings": [{"binaryPropertyName": "x"}]}}
            )
        with self.assertRaises(ParamsError):
            RunContainerParams.from_dict(["not", "a", "mapping"])  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
