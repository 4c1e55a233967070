"""Tests for size calculation."""

import os

from qmic.generator import parse
from qmic.generator.sizes import SizeKind, calculate_sizes

FILE_DIR = os.path.dirname(os.path.realpath(__file__))


def sizes_of(text):
    return calculate_sizes(*parse(text))


def describe_struct_sizes():
    def calculates_fixed_structs(expect):
        info = sizes_of("package a; struct point { i32 x; i32 y; };")

        expect(info.structs["point"].size.min_size) == 8
        expect(info.structs["point"].size.max_size) == 8
        expect(info.structs["point"].size.kind) == SizeKind.FIXED

    def calculates_fixed_arrays(expect):
        info = sizes_of("package a; struct s { u8 tag; u16 v[4]; };")

        expect(info.structs["s"].size.min_size) == 9
        expect(info.structs["s"].size.is_fixed) == True

    def bounds_counted_arrays(expect):
        info = sizes_of("package a; struct s { u8 count_n; u8 *count(u8); };")

        expect(info.structs["s"].size.min_size) == 1  # count only
        expect(info.structs["s"].size.max_size) == 256  # 1 + 255
        expect(info.structs["s"].size.kind) == SizeKind.BOUNDED

    def leaves_strings_unbounded(expect):
        info = sizes_of("package a; struct s { u8 id; string name; };")

        expect(info.structs["s"].size.min_size) == 2  # id and terminator
        expect(info.structs["s"].size.max_size) == None
        expect(info.structs["s"].size.kind) == SizeKind.UNBOUNDED

    def includes_nested_structs(expect):
        info = sizes_of("package a; struct outer { u8 tag; struct { u16 a; u16 b; } inner; };")

        expect(info.structs["outer_inner"].size.min_size) == 4
        expect(info.structs["outer"].size.min_size) == 5
        expect(info.structs["outer"].size.is_fixed) == True


def describe_message_sizes():
    def counts_headers_and_optional_members(expect):
        info = sizes_of("package a; request q { required u8 a = 1; optional u16 b = 2; } = 1;")
        size = info.messages["q"].size

        expect(size.min_size) == 11  # 7 + (3 + 1)
        expect(size.max_size) == 16  # 11 + (3 + 2)
        expect(size.kind) == SizeKind.BOUNDED

    def adds_count_prefix_for_variable_arrays(expect):
        info = sizes_of("package a; response r { required u8 v_n = 1; required u32 v(4) = 2; } = 3;")
        size = info.messages["r"].size

        expect(size.min_size) == 15  # 7 + 4 + (3 + 1)
        expect(size.max_size) == 31  # 15 + 4 * 4
        expect(info.messages["r"].msg_id) == 3

    def uses_no_prefix_for_fixed_arrays(expect):
        info = sizes_of("package a; indication i { required u16 v[3] = 1; } = 1;")

        expect(info.messages["i"].size.min_size) == 16
        expect(info.messages["i"].size.kind) == SizeKind.FIXED

    def treats_message_strings_as_unbounded(expect):
        info = sizes_of("package a; request q { required string s = 1; } = 1;")

        expect(info.messages["q"].size.min_size) == 10
        expect(info.messages["q"].size.max_size) == None


def describe_protocol_info():
    def summarizes_definition_file(expect):
        with open(f"{FILE_DIR}/test.qmi", encoding="ascii") as f:
            info = calculate_sizes(*parse(f.read()))

        expect(info.package) == "test"
        expect(list(info.messages)) == ["read_req", "read_resp", "read_ind"]
        expect(info.structs["point"].size.is_fixed) == True
        expect(info.structs["file_info"].size.kind) == SizeKind.UNBOUNDED
        expect(info.max_message_size) == None

    def reports_message_limits(expect):
        info = sizes_of(
            "package a;"
            "request q { required u8 a = 1; } = 1;"
            "response r { required u32 b = 1; } = 1;"
        )

        expect(info.min_message_size) == 11
        expect(info.max_message_size) == 14

    def handles_empty_package(expect):
        info = sizes_of("package a;")

        expect(info.structs) == {}
        expect(info.min_message_size) == 0
        expect(info.max_message_size) == 0
