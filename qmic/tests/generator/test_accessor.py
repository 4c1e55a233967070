"""Tests for the accessor style C generator."""

import os

import pytest

from qmic.generator import accessor, parse
from qmic.generator.accessor import (
    AccessorGenerator,
    AccessPath,
    loop_index,
    should_emit_builder,
    should_emit_parser,
)
from qmic.generator.types import MessageType, PackageType, QmiMessage

FILE_DIR = os.path.dirname(os.path.realpath(__file__))


@pytest.fixture(scope="module")
def definition():
    with open(f"{FILE_DIR}/test.qmi", encoding="ascii") as f:
        return parse(f.read())


@pytest.fixture(scope="module")
def header(definition):
    return accessor.render_header(*definition)


@pytest.fixture(scope="module")
def source(definition):
    return accessor.render_source(*definition)


def describe_emission_policy():
    @pytest.mark.parametrize(
        "pkg_type,msg_type,builder,parser",
        [
            (PackageType.AGNOSTIC, MessageType.REQUEST, True, True),
            (PackageType.AGNOSTIC, MessageType.RESPONSE, True, True),
            (PackageType.AGNOSTIC, MessageType.INDICATION, True, True),
            (PackageType.CLIENT, MessageType.REQUEST, True, False),
            (PackageType.CLIENT, MessageType.RESPONSE, False, True),
            (PackageType.CLIENT, MessageType.INDICATION, True, True),
            (PackageType.SERVER, MessageType.REQUEST, False, True),
            (PackageType.SERVER, MessageType.RESPONSE, True, False),
            (PackageType.SERVER, MessageType.INDICATION, True, True),
        ],
    )
    def follows_package_role(expect, pkg_type, msg_type, builder, parser):
        qm = QmiMessage(type=msg_type, name="m")
        expect(should_emit_builder(pkg_type, qm)) == builder
        expect(should_emit_parser(pkg_type, qm)) == parser

    def client_builds_requests_only(expect, header, source):
        expect("test_read_req_set_id(" in header) == True
        expect("test_read_req_get_id(" in header) == False
        expect("test_read_req_alloc(" in source) == True
        expect("test_read_req_parse(" in source) == False

    def client_parses_responses_only(expect, header, source):
        expect("test_read_resp_get_file(" in header) == True
        expect("test_read_resp_set_file(" in header) == False
        expect("test_read_resp_getall(" in source) == True
        expect("test_read_resp_encode(" in source) == False

    def indications_get_both(expect, header):
        expect("test_read_ind_set_file(" in header) == True
        expect("test_read_ind_get_file(" in header) == True

    def free_is_always_emitted(expect, source):
        for name in ("read_req", "read_resp", "read_ind"):
            expect(f"void test_{name}_free(struct test_{name} *{name})" in source) == True

    def server_inverts_client(expect):
        package, defs = parse(
            "package s; package_type server;"
            "request q { required u8 a = 1; } = 1;"
            "response r { required u8 b = 1; } = 1;"
        )
        header = accessor.render_header(package, defs)
        expect("s_q_get_a(" in header) == True
        expect("s_q_set_a(" in header) == False
        expect("s_r_set_b(" in header) == True
        expect("s_r_get_b(" in header) == False


def describe_access_path():
    def renders_nested_path(expect):
        path = AccessPath("val").element("cards", "i").field("apps")
        expect(path.render("name")) == "val->cards[i].apps.name"

    def renders_root_member(expect):
        expect(AccessPath("out").render("x")) == "out->x"

    def is_not_changed_by_stepping_in(expect):
        path = AccessPath("val").field("a")
        path.element("b", "i")
        expect(path.render("c")) == "val->a.c"

    def names_loop_indexes_by_depth(expect):
        expect([loop_index(d) for d in (1, 2, 3)]) == ["i", "ii", "iii"]


def describe_header():
    def has_include_guard(expect, header):
        expect(header.startswith("#ifndef __QMI_TEST_H__\n#define __QMI_TEST_H__\n")) == True

    def guards_shared_helpers(expect, header):
        expect(header).contains(
            "#ifndef QMIC_GROW_DEFINED\n#define QMIC_GROW_DEFINED\nstatic inline int qmic_grow("
        )

    def defines_constants(expect, header):
        expect("#define TEST_MAX 16" in header) == True

    def packs_structs_without_owned_data(expect, header):
        expect("struct test_point {\n\tint32_t x;\n\tint32_t y;\n} __attribute__((packed));" in header) == True

    def declares_structs_owning_data(expect, header):
        expect(header).contains(
            "struct test_file_info_card {\n"
            "\tuint8_t apps_n;\n"
            "\tstruct test_file_info_card_apps *apps;\n"
            "\tuint8_t slot[2];\n"
            "};"
        )

    def declares_free_routines(expect, header):
        expect("void test_file_info_free(struct test_file_info *val);" in header) == True
        expect("void test_point_free(" in header) == False

    def declares_data_struct(expect, header):
        expect(header).contains(
            "struct test_read_resp_data {\n"
            "\tstruct qmi_response_type_v01 *result;\n"
            "\tbool file_valid;\n"
            "\tstruct test_file_info *file;\n"
            "\tbool origin_valid;\n"
            "\tstruct test_point *origin;\n"
            "\tbool coords_valid;\n"
            "\tsize_t coords_n;\n"
            "\tuint16_t *coords;\n"
            "};"
        )

    def reuses_declared_count_member(expect):
        package, defs = parse("package a; response r { optional u8 v_n = 1; optional u32 v(4) = 2; };")
        header = accessor.render_header(package, defs)
        expect("\tuint8_t v_n;\n\tbool v_valid;\n\tuint32_t *v;\n" in header) == True
        expect("size_t v_n;" in header) == False

    def has_no_result_accessors(expect, header):
        expect("_get_result(" in header) == False


def describe_serialise():
    def walks_nested_structs(expect, definition):
        gen = AccessorGenerator(*definition)
        body = gen.serialise(definition[1].struct("file_info"))
        expect(body.splitlines()) == [
            "\tput_next(uint16_t, 2, val->data_n);",
            "\tfor (size_t i = 0; i < val->data_n; i++) {",
            "\t\tput_next(uint8_t, 1, val->data[i]);",
            "\t}",
            "\tput_string(val->name);",
            "\tput_next(uint8_t, 1, val->card.apps_n);",
            "\tfor (size_t i = 0; i < val->card.apps_n; i++) {",
            "\t\tput_next(uint32_t, 4, val->card.apps[i].aid);",
            "\t\tput_string(val->card.apps[i].label);",
            "\t}",
            "\tfor (size_t i = 0; i < 2; i++) {",
            "\t\tput_next(uint8_t, 1, val->card.slot[i]);",
            "\t}",
        ]

    def uses_deeper_index_for_inner_loops(expect):
        package, defs = parse(
            "package a; struct o { u8 rows_n; struct { u8 cols_n; u16 *cols(4); } *rows(4); };"
        )
        body = AccessorGenerator(package, defs).serialise(defs.struct("o"))
        expect("\t\tfor (size_t ii = 0; ii < val->rows[i].cols_n; ii++) {" in body) == True
        expect("\t\t\tput_next(uint16_t, 2, val->rows[i].cols[ii]);" in body) == True


def describe_deserialise():
    def allocates_arrays_zeroed(expect, definition):
        gen = AccessorGenerator(*definition)
        body = gen.deserialise(definition[1].struct("file_info"))
        expect(body.splitlines()[:7]) == [
            "\tout->data_n = get_next(uint16_t, 2);",
            "\tout->data = calloc(out->data_n, sizeof(uint8_t));",
            "\tif (!out->data && out->data_n)",
            "\t\tgoto err_free;",
            "\tfor (size_t i = 0; i < out->data_n; i++) {",
            "\t\tout->data[i] = get_next(uint8_t, 1);",
            "\t}",
        ]
        expect("\t\tout->card.apps[i].label = get_string();" in body) == True

    def releases_partial_results_on_error(expect, source):
        expect(source).contains(
            "err_wrong_len:\n"
            '\tfprintf(stderr, "%s: expected at least %zu bytes but got %zu\\n", __func__, len, buf_sz);\n'
            "err_free:\n"
            "\ttest_file_info_free(out);\n"
            "\tfree(out);\n"
            "\treturn NULL;\n"
        )


def describe_free():
    def frees_everything_owned(expect, definition):
        gen = AccessorGenerator(*definition)
        body = gen.free_body(definition[1].struct("file_info"))
        expect(body.splitlines()) == [
            "\tfree(val->data);",
            "\tfree(val->name);",
            "\tfor (size_t i = 0; val->card.apps && i < val->card.apps_n; i++) {",
            "\t\tfree(val->card.apps[i].label);",
            "\t}",
            "\tfree(val->card.apps);",
        ]

    def data_free_releases_members(expect, source):
        expect(source).contains(
            "\tif (data->file) {\n"
            "\t\ttest_file_info_free(data->file);\n"
            "\t\tfree(data->file);\n"
            "\t}\n"
            "\tfree(data->origin);\n"
            "\tfree(data->coords);\n"
        )


def describe_source():
    def includes_own_header(expect, source):
        expect('#include "qmi_test.h"' in source) == True

    def allocates_with_type_and_id(expect, source):
        expect("return (struct test_read_req *)qmi_tlv_init(txn, 32, 0);" in source) == True
        expect("return (struct test_read_ind *)qmi_tlv_init(txn, 33, 4);" in source) == True

    def uses_count_width_for_arrays(expect, source):
        expect("qmi_tlv_set_array((struct qmi_tlv *)read_req, 18, 1, val, count, sizeof(uint32_t));" in source) == True

    def checks_fixed_array_count(expect, source):
        expect("\tif (count != 3)\n\t\treturn -EINVAL;\n" in source) == True

    def copies_result_in_getall(expect, source):
        expect("void *ptr = qmi_tlv_get((struct qmi_tlv *)read_resp, 2, NULL);" in source) == True

    def serialises_in_setter(expect, source):
        expect("int test_read_ind_set_file(struct test_read_ind *read_ind, struct test_file_info *val)" in source) == True
        expect("\tput_string(val->card.apps[i].label);" in source) == True

    def renders_documented_example(expect):
        package, defs = parse(
            "package p; struct s { u8 count_n; u8 *count(u8); }; response r { required struct s data = 1; };"
        )
        source = accessor.render_source(package, defs)
        expect("struct p_s *p_r_get_data(struct p_r *r)" in source) == True
        expect("\tout->count = calloc(out->count_n, sizeof(uint8_t));" in source) == True
        expect("void p_s_free(struct p_s *val)\n{\n\tfree(val->count);\n}" in source) == True
