"""Static table C code generator for QMI packages.

Emits native structs with fixed capacities plus ``qmi_elem_info`` tables
describing them, for encoders that walk the table at runtime instead of
calling generated accessors.
"""

from dataclasses import dataclass

from jinja2 import Environment, PackageLoader

from .errors import GenerationError
from .types import (
    PrimitiveType,
    QmiDefinitions,
    QmiMessage,
    QmiMessageMember,
    QmiPackage,
    QmiStruct,
    QmiStructMember,
    RESULT_STRUCT_NAME,
)

env = Environment(
    loader=PackageLoader("qmic.generator", "templates"),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    line_comment_prefix="%%",
    line_statement_prefix="%",
)

header_template = env.get_template("kernel.h.j2")
source_template = env.get_template("kernel.c.j2")

NATIVE_TYPE_MAP = {
    PrimitiveType.U8: "uint8_t",
    PrimitiveType.U16: "uint16_t",
    PrimitiveType.U32: "uint32_t",
    PrimitiveType.U64: "uint64_t",
    PrimitiveType.I8: "int8_t",
    PrimitiveType.I16: "int16_t",
    PrimitiveType.I32: "int32_t",
    PrimitiveType.I64: "int64_t",
    PrimitiveType.CHAR: "char",
}

DATA_TYPE_MAP = {
    PrimitiveType.U8: "QMI_UNSIGNED_1_BYTE",
    PrimitiveType.U16: "QMI_UNSIGNED_2_BYTE",
    PrimitiveType.U32: "QMI_UNSIGNED_4_BYTE",
    PrimitiveType.U64: "QMI_UNSIGNED_8_BYTE",
    PrimitiveType.I8: "QMI_SIGNED_1_BYTE",
    PrimitiveType.I16: "QMI_SIGNED_2_BYTE",
    PrimitiveType.I32: "QMI_SIGNED_4_BYTE",
    PrimitiveType.I64: "QMI_SIGNED_8_BYTE",
    PrimitiveType.CHAR: "QMI_SIGNED_1_BYTE",
}

# Native structs hold variable length data inline, up to these capacities
STRING_CAPACITY = 256
ARRAY_CAPACITY = 64


def capacity(member: QmiStructMember) -> int:
    """Elements a native struct reserves for a variable length array."""
    return min(member.array_size, ARRAY_CAPACITY)


@dataclass
class ElemInfo:
    """One entry of a ``qmi_elem_info`` table."""

    data_type: str
    elem_size: str
    offset: str
    elem_len: int = 1
    array_type: str | None = None
    tlv_type: int | None = None
    ei_array: str | None = None


@dataclass
class NativeField:
    """One line of a native struct declaration."""

    ctype: str
    name: str
    dims: str = ""
    comment: str | None = None


class KernelGenerator:
    """Render the header and source of the static table API for one package."""

    def __init__(self, package: QmiPackage, definitions: QmiDefinitions) -> None:
        self.package = package
        self.definitions = definitions

    def struct_type(self, qs: QmiStruct) -> str:
        if qs.name == RESULT_STRUCT_NAME:
            return f"struct {RESULT_STRUCT_NAME}"
        return f"struct {self.package.name}_{qs.name}"

    def ei_name(self, qs: QmiStruct) -> str:
        if qs.name == RESULT_STRUCT_NAME:
            return f"{RESULT_STRUCT_NAME}_ei"
        return f"{self.package.name}_{qs.name}_ei"

    def _native(self, member: QmiStructMember | QmiMessageMember) -> str:
        if member.type == PrimitiveType.STRUCT:
            if member.struct is None:
                raise GenerationError(f"member '{member.name}' has no struct definition")
            return self.struct_type(member.struct)
        if member.type not in NATIVE_TYPE_MAP:
            raise GenerationError(f"member '{member.name}' has no native type for {member.type.value}")
        return NATIVE_TYPE_MAP[member.type]

    # Native structs

    def struct_fields(self, qs: QmiStruct) -> list[NativeField]:
        fields = []
        for member in qs.members:
            if member.type == PrimitiveType.STRING:
                fields.append(NativeField("uint32_t", f"{member.name}_len"))
                fields.append(NativeField("char", member.name, f"[{STRING_CAPACITY}]"))
            elif member.is_ptr:
                fields.append(NativeField(self._native(member), member.name, f"[{capacity(member)}]"))
            elif member.array_fixed:
                fields.append(NativeField(self._native(member), member.name, f"[{member.array_size}]"))
            else:
                fields.append(NativeField(self._native(member), member.name))
        return fields

    def message_fields(self, qm: QmiMessage) -> list[NativeField]:
        fields = []
        for member in qm.members:
            comment = f"0x{member.id:02x}"
            if member.is_result:
                fields.append(NativeField(self._native(member), member.name, comment=comment))
                continue
            if not member.required:
                fields.append(NativeField("bool", f"{member.name}_valid"))
            if member.type == PrimitiveType.STRING:
                fields.append(NativeField("uint32_t", f"{member.name}_len"))
                fields.append(NativeField("char", member.name, f"[{STRING_CAPACITY}]", comment))
            elif member.is_array:
                fields.append(NativeField("uint32_t", f"{member.name}_len"))
                fields.append(NativeField(self._native(member), member.name, f"[{member.array_size}]", comment))
            else:
                fields.append(NativeField(self._native(member), member.name, comment=comment))
        return fields

    # Element info tables

    def struct_elem_info(self, qs: QmiStruct) -> list[ElemInfo]:
        owner = self.struct_type(qs)
        counts = {m.name for m in qs.members if m.is_dynamic_array}
        entries = []

        for member in qs.members:
            offset = f"offsetof({owner}, {member.name})"

            if member.name.endswith("_n") and member.name[:-2] in counts:
                entries.append(ElemInfo("QMI_DATA_LEN", f"sizeof({self._native(member)})", offset))
            elif member.type == PrimitiveType.STRING:
                entries.append(ElemInfo("QMI_STRING", "sizeof(char)", offset, elem_len=STRING_CAPACITY))
            elif member.type == PrimitiveType.STRUCT:
                assert member.struct is not None
                entries.append(
                    ElemInfo(
                        "QMI_STRUCT",
                        f"sizeof({self.struct_type(member.struct)})",
                        offset,
                        elem_len=self._struct_elem_len(member),
                        array_type=self._struct_array_type(member),
                        ei_array=self.ei_name(member.struct),
                    )
                )
            else:
                entries.append(
                    ElemInfo(
                        DATA_TYPE_MAP[member.type],
                        f"sizeof({self._native(member)})",
                        offset,
                        elem_len=self._struct_elem_len(member),
                        array_type=self._struct_array_type(member),
                    )
                )
        return entries

    def _struct_elem_len(self, member: QmiStructMember) -> int:
        if member.is_ptr:
            return capacity(member)
        if member.array_fixed:
            return member.array_size
        return 1

    def _struct_array_type(self, member: QmiStructMember) -> str | None:
        if member.is_ptr:
            return "VAR_LEN_ARRAY"
        if member.array_fixed:
            return "STATIC_ARRAY"
        return None

    def message_elem_info(self, qm: QmiMessage) -> list[ElemInfo]:
        owner = f"struct {self.package.name}_{qm.name}"
        entries = []

        for member in qm.members:
            offset = f"offsetof({owner}, {member.name})"

            if not member.required and not member.is_result:
                entries.append(
                    ElemInfo("QMI_OPT_FLAG", "sizeof(bool)", f"offsetof({owner}, {member.name}_valid)", tlv_type=member.id)
                )

            if member.type == PrimitiveType.STRING:
                entries.append(
                    ElemInfo(
                        "QMI_STRING",
                        "sizeof(char)",
                        offset,
                        elem_len=STRING_CAPACITY,
                        array_type="VAR_LEN_ARRAY",
                        tlv_type=member.id,
                    )
                )
                continue

            if member.is_array and not member.array_fixed:
                assert member.array_len_type is not None
                entries.append(
                    ElemInfo(
                        "QMI_DATA_LEN",
                        f"sizeof({NATIVE_TYPE_MAP[member.array_len_type]})",
                        f"offsetof({owner}, {member.name}_len)",
                        tlv_type=member.id,
                    )
                )

            if member.is_array:
                elem_len = member.array_size
                array_type = "STATIC_ARRAY" if member.array_fixed else "VAR_LEN_ARRAY"
            else:
                elem_len = 1
                array_type = None

            if member.type == PrimitiveType.STRUCT:
                assert member.struct is not None
                data_type = "QMI_STRUCT"
                ei_array = self.ei_name(member.struct)
            else:
                data_type = DATA_TYPE_MAP[member.type]
                ei_array = None

            entries.append(
                ElemInfo(
                    data_type,
                    f"sizeof({self._native(member)})",
                    offset,
                    elem_len=elem_len,
                    array_type=array_type,
                    tlv_type=member.id,
                    ei_array=ei_array,
                )
            )
        return entries

    def tables(self) -> list[tuple[str, list[ElemInfo]]]:
        """Every element info table, struct tables before message tables."""
        result = [(self.ei_name(qs), self.struct_elem_info(qs)) for qs in self.definitions.structs]
        for qm in self.definitions.messages:
            result.append((f"{self.package.name}_{qm.name}_ei", self.message_elem_info(qm)))
        return result

    def _context(self) -> dict:
        return {
            "package": self.package,
            "guard": f"__QMI_{self.package.name.upper()}_H__",
            "consts": self.definitions.consts,
            "structs": self.definitions.structs,
            "messages": self.definitions.messages,
            "struct_type": self.struct_type,
            "ei_name": self.ei_name,
            "struct_fields": self.struct_fields,
            "message_fields": self.message_fields,
            "tables": self.tables,
        }

    def render_header(self) -> str:
        return header_template.render(**self._context())

    def render_source(self) -> str:
        return source_template.render(**self._context())


def render_header(package: QmiPackage, definitions: QmiDefinitions) -> str:
    """Render native structs, table declarations and message initializers."""
    return KernelGenerator(package, definitions).render_header()


def render_source(package: QmiPackage, definitions: QmiDefinitions) -> str:
    """Render the element info tables."""
    return KernelGenerator(package, definitions).render_source()
