from pathlib import Path
from typing import List

import pytest
from loguru import logger

from Opera_to_Tomboy import Options


SAMPLE_ADR = """Opera Hotlist version 2.0
Options: encoding = utf8, version=3

#FOLDER
\tID=2
\tNAME=Personal
\tCREATED=1000000000
\tUNIQUEID=F0000000000000000000000000000001

#NOTE
\tID=3
\tUNIQUEID=abc123
\tNAME=Title\x02Body text
\tCREATED=1000000000

#NOTE
\tID=4
\tUNIQUEID=def456
\tNAME=Shopping\x02\x02milk\x02\x02bread
\tCREATED=1100000000

-

#FOLDER
\tID=5
\tNAME=Trash
\tTRASH FOLDER=YES
\tUNIQUEID=F0000000000000000000000000000002

#NOTE
\tID=6
\tUNIQUEID=deleted1
\tNAME=Old\x02Thrown away
\tCREATED=900000000

-
"""


@pytest.fixture(autouse=True)
def reset_logger():
    """Drop sinks added by main() so they do not outlive the captured streams."""
    yield
    logger.remove()


@pytest.fixture
def log_messages() -> List[str]:
    """Collect loguru messages emitted during the test."""
    messages: List[str] = []
    handler_id = logger.add(lambda msg: messages.append(msg.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def adr_file(tmp_path: Path) -> Path:
    path = tmp_path / "notes.adr"
    path.write_text(SAMPLE_ADR, encoding="utf-8")
    return path


@pytest.fixture
def options(tmp_path: Path) -> Options:
    return Options(input=tmp_path / "notes.adr", output=tmp_path / "out")
