"""Compile the generated accessors and run them against a stub TLV runtime."""

import os
import shutil
import subprocess

import pytest

from qmic.generator import accessor, parse

FILE_DIR = os.path.dirname(os.path.realpath(__file__))
RUNTIME_DIR = os.path.join(FILE_DIR, "runtime")

EXAMPLE = "package p; struct s { u8 count_n; u8 *count(u8); }; response r { required struct s data = 1; };"


@pytest.fixture(scope="module")
def cc():
    compiler = shutil.which(os.environ.get("CC", "cc")) or shutil.which("gcc") or shutil.which("clang")
    if compiler is None:
        pytest.skip("no C compiler found")
    return compiler


def write_package(directory, text):
    package, definitions = parse(text)
    (directory / f"qmi_{package.name}.h").write_text(accessor.render_header(package, definitions))
    (directory / f"qmi_{package.name}.c").write_text(accessor.render_source(package, definitions))
    return package.name


def run_cc(cc, directory, *args):
    return subprocess.run(
        [cc, "-Wall", "-I", str(directory), "-I", RUNTIME_DIR, *args],
        capture_output=True,
        text=True,
        cwd=directory,
    )


def build(cc, directory, sources, output):
    """Build with AddressSanitizer where the toolchain has it, plainly otherwise."""
    sanitized = run_cc(cc, directory, "-g", "-fsanitize=address", *sources, "-o", output)
    if sanitized.returncode == 0:
        return sanitized
    return run_cc(cc, directory, *sources, "-o", output)


def describe_headers():
    def can_be_included_together(expect, cc, tmp_path):
        write_package(tmp_path, "package a; struct s { u8 v_n; u8 *v(4); }; request q { required s x = 1; } = 1;")
        write_package(tmp_path, "package b; struct s { string n; }; response r { required s x = 1; } = 1;")
        (tmp_path / "both.c").write_text('#include "qmi_a.h"\n#include "qmi_b.h"\n')

        result = run_cc(cc, tmp_path, "-fsyntax-only", "both.c")
        expect(result.returncode) == 0


def describe_accessors():
    def round_trip_and_release_on_truncation(expect, cc, tmp_path):
        with open(f"{FILE_DIR}/test.qmi", encoding="ascii") as f:
            write_package(tmp_path, f.read())
        write_package(tmp_path, EXAMPLE)

        sources = ["qmi_test.c", "qmi_p.c", os.path.join(RUNTIME_DIR, "roundtrip.c")]
        compiled = build(cc, tmp_path, sources, "roundtrip")
        expect(compiled.returncode) == 0

        result = subprocess.run([str(tmp_path / "roundtrip")], capture_output=True, text=True)
        expect(result.stdout) == "ok\n"
        expect(result.returncode) == 0
        expect(result.stderr).contains("test_read_ind_get_file: expected at least 12 bytes but got 10")
        expect(result.stderr).contains("p_r_get_data: expected at least 4 bytes but got 3")
