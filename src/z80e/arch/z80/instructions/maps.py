"""
Z80 命令マッピング定義。
各命令モジュールから関数をインポートし、オペコードと関数の対応表を構築します。

デコード表はプレフィックスごとに7つ（基本、CB、ED、DD、FD、DDCB、FDCB）あり、
7つの表はいずれも256個全てのオペコードを網羅します。
DD/FD表のインデックス形式は、基本デコード関数にプレフィックスを束縛したものです。
"""
from dataclasses import replace
from functools import partial

from z80e.core.operation import Operation
from z80e.transport.bus import Bus
from z80e.arch.z80.state import Z80CpuState
from .alu import (
    decode_alu_r, decode_alu_n, decode_inc_dec8, decode_inc_dec16, decode_add_hl_ss, decode_rotate_a,
    decode_accumulator_misc, decode_ed_neg, decode_ed_adc_sbc_hl, decode_ed_rrd_rld, decode_ed_block_compare,
    execute_alu_r, execute_alu_n, execute_inc_dec8, execute_inc_dec16, execute_add_hl_ss, execute_rotate_a,
    execute_accumulator_misc, execute_ed_neg, execute_ed_adc_sbc_hl, execute_ed_rrd_rld, execute_ed_block_compare
)
from .load import (
    decode_ld_r_r_prime, decode_ld_r_n, decode_ld_ss_nn, decode_ld_indirect_a, decode_ld_a_nn, decode_ld_nn_a,
    decode_ld_hl_indirect, decode_ld_sp_hl, decode_push_pop, decode_08, decode_eb, decode_d9, decode_e3,
    decode_ed_ld_rr_indirect, decode_ed_ld_ir, decode_ed_block_transfer,
    execute_ld_r_r_prime, execute_ld_r_n, execute_ld_ss_nn, execute_ld_indirect_a, execute_ld_a_nn, execute_ld_nn_a,
    execute_ld_hl_indirect, execute_ld_sp_hl, execute_push_pop, execute_08, execute_eb, execute_d9, execute_e3,
    execute_ed_ld_rr_indirect, execute_ed_ld_ir, execute_ed_block_transfer
)
from .control import (
    decode_00, decode_76, decode_fb, decode_f3, decode_c3, decode_jp_cc_nn, decode_e9, decode_18, decode_10,
    decode_jr_cc_e, decode_cd, decode_call_cc_nn, decode_c9, decode_ret_cc, decode_rst, decode_db, decode_d3,
    decode_cb, decode_index_cb, decode_ed_io_c, decode_ed_block_io, decode_ed_im, decode_ed_reti_retn, decode_ed_nop,
    execute_00, execute_76, execute_fb, execute_f3, execute_c3, execute_jp_cc_nn, execute_e9, execute_18, execute_10,
    execute_jr_cc_e, execute_cd, execute_call_cc_nn, execute_c9, execute_ret_cc, execute_rst, execute_db, execute_d3,
    execute_cb, execute_index_cb, execute_ed_io_c, execute_ed_block_io, execute_im, execute_reti_retn
)

# --- Prefix Decoding Functions ---

# @intent:responsibility CBプレフィックスに続くオペコードを読み、CB表でデコードします。
def decode_cb_prefix(opcode: int, bus: Bus, pc: int) -> Operation:
    cb_opcode = bus.read(pc + 1)
    return CB_DECODE_MAP[cb_opcode](cb_opcode, bus, pc)

# @intent:responsibility EDプレフィックスに続くオペコードを読み、ED表でデコードします。
def decode_ed_prefix(opcode: int, bus: Bus, pc: int) -> Operation:
    ed_opcode = bus.read(pc + 1)
    return ED_DECODE_MAP[ed_opcode](ed_opcode, bus, pc)

# @intent:responsibility DD/FDプレフィックスに続くオペコードを読み、DD/FD表でデコードします。
def decode_index_prefix(opcode: int, bus: Bus, pc: int) -> Operation:
    """DD/FDプレフィックス命令（DDCB/FDCBを含む）をデコードします。"""
    next_opcode = bus.read(pc + 1)
    return INDEX_DECODE_MAPS[opcode][next_opcode](next_opcode, bus, pc)

# @intent:responsibility DD CB d op / FD CB d op の最終オペコードを読み、DDCB/FDCB表でデコードします。
def decode_index_cb_prefix(opcode: int, bus: Bus, pc: int, prefix: int = 0xDD) -> Operation:
    final_opcode = bus.read(pc + 3)
    return INDEX_CB_DECODE_MAPS[prefix][final_opcode](final_opcode, bus, pc)

# @intent:responsibility DD/FDの直後に再びDD/FDが続く場合、先頭のプレフィックスだけを1バイトのNOPとして扱います。
# @intent:rationale 残りのプレフィックスは次の命令境界で改めてデコードされるため、デコードの再帰は1段で収まります。
def decode_index_repeat(opcode: int, bus: Bus, pc: int, prefix: int = 0xDD) -> Operation:
    return Operation(opcode_hex=f"{prefix:02X}", mnemonic="NOP*", operands=[f"${prefix:02X}"], cycle_count=4, length=1)

# @intent:responsibility 単独のプレフィックスを実行します。続くバイトと合わせて1命令とみなすため、直後の境界では割り込みを受け付けません。
def execute_index_repeat(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    state.after_prefix = True

# @intent:responsibility HLを使わない命令にDD/FDが付いた場合、プレフィックスを無視して基本命令としてデコードします。
# @intent:post-condition プレフィックス分として長さに1バイト、コストに4 Tステートが加算されます。
def decode_index_fallback(opcode: int, bus: Bus, pc: int, prefix: int = 0xDD) -> Operation:
    base_operation = DECODE_MAP[opcode](opcode, bus, pc + 1)
    return replace(
        base_operation,
        length=base_operation.length + 1,
        cycle_count=base_operation.cycle_count + 4
    )

# --- Instruction Tables ---
# (オペコードの集合, デコード関数, 実行関数)

_CONDITIONAL = range(0xC0, 0x100, 0x08)

BASE_INSTRUCTIONS = [
    ([0x00], decode_00, execute_00),
    (range(0x01, 0x40, 0x10), decode_ld_ss_nn, execute_ld_ss_nn), # LD BC/DE/HL/SP,nn
    ([0x02, 0x12, 0x0A, 0x1A], decode_ld_indirect_a, execute_ld_indirect_a),
    ([0x03, 0x13, 0x23, 0x33, 0x0B, 0x1B, 0x2B, 0x3B], decode_inc_dec16, execute_inc_dec16),
    (range(0x04, 0x40, 0x08), decode_inc_dec8, execute_inc_dec8), # INC r
    (range(0x05, 0x40, 0x08), decode_inc_dec8, execute_inc_dec8), # DEC r
    (range(0x06, 0x40, 0x08), decode_ld_r_n, execute_ld_r_n), # LD r,n
    ([0x07, 0x0F, 0x17, 0x1F], decode_rotate_a, execute_rotate_a),
    ([0x08], decode_08, execute_08),
    (range(0x09, 0x40, 0x10), decode_add_hl_ss, execute_add_hl_ss), # ADD HL,ss
    ([0x10], decode_10, execute_10),
    ([0x18], decode_18, execute_18),
    (range(0x20, 0x40, 0x08), decode_jr_cc_e, execute_jr_cc_e),
    ([0x22, 0x2A], decode_ld_hl_indirect, execute_ld_hl_indirect),
    ([0x27, 0x2F, 0x37, 0x3F], decode_accumulator_misc, execute_accumulator_misc),
    ([0x32], decode_ld_nn_a, execute_ld_nn_a),
    ([0x3A], decode_ld_a_nn, execute_ld_a_nn),
    ([op for op in range(0x40, 0x80) if op != 0x76], decode_ld_r_r_prime, execute_ld_r_r_prime),
    ([0x76], decode_76, execute_76),
    (range(0x80, 0xC0), decode_alu_r, execute_alu_r),
    ([op for op in _CONDITIONAL], decode_ret_cc, execute_ret_cc),
    ([op | 0x02 for op in _CONDITIONAL], decode_jp_cc_nn, execute_jp_cc_nn),
    ([op | 0x04 for op in _CONDITIONAL], decode_call_cc_nn, execute_call_cc_nn),
    ([op | 0x06 for op in _CONDITIONAL], decode_alu_n, execute_alu_n), # ADD A,n ... CP n
    ([op | 0x07 for op in _CONDITIONAL], decode_rst, execute_rst),
    (range(0xC1, 0x100, 0x10), decode_push_pop, execute_push_pop), # POP qq
    (range(0xC5, 0x100, 0x10), decode_push_pop, execute_push_pop), # PUSH qq
    ([0xC3], decode_c3, execute_c3),
    ([0xC9], decode_c9, execute_c9),
    ([0xCB], decode_cb_prefix, None),
    ([0xCD], decode_cd, execute_cd),
    ([0xD3], decode_d3, execute_d3),
    ([0xD9], decode_d9, execute_d9),
    ([0xDB], decode_db, execute_db),
    ([0xDD, 0xFD], decode_index_prefix, execute_index_repeat), # 単独のプレフィックス（NOP*）として実行される
    ([0xE3], decode_e3, execute_e3),
    ([0xE9], decode_e9, execute_e9),
    ([0xEB], decode_eb, execute_eb),
    ([0xED], decode_ed_prefix, None),
    ([0xF3], decode_f3, execute_f3),
    ([0xF9], decode_ld_sp_hl, execute_ld_sp_hl),
    ([0xFB], decode_fb, execute_fb),
]

CB_INSTRUCTIONS = [
    (range(0x00, 0x100), decode_cb, execute_cb),
]

ED_INSTRUCTIONS = [
    (range(0x00, 0x100), decode_ed_nop, execute_00), # 未定義: 8 Tステートの何もしない命令
    ([op for op in range(0x40, 0x80, 0x08)], decode_ed_io_c, execute_ed_io_c), # IN r,(C)
    ([op | 0x01 for op in range(0x40, 0x80, 0x08)], decode_ed_io_c, execute_ed_io_c), # OUT (C),r
    ([0x42, 0x52, 0x62, 0x72, 0x4A, 0x5A, 0x6A, 0x7A], decode_ed_adc_sbc_hl, execute_ed_adc_sbc_hl),
    ([0x43, 0x53, 0x63, 0x73, 0x4B, 0x5B, 0x6B, 0x7B], decode_ed_ld_rr_indirect, execute_ed_ld_rr_indirect),
    ([op | 0x04 for op in range(0x40, 0x80, 0x08)], decode_ed_neg, execute_ed_neg), # NEG とミラー
    ([op | 0x05 for op in range(0x40, 0x80, 0x08)], decode_ed_reti_retn, execute_reti_retn), # RETI / RETN とミラー
    ([op | 0x06 for op in range(0x40, 0x80, 0x08)], decode_ed_im, execute_im), # IM 0/1/2 とミラー
    ([0x47, 0x4F, 0x57, 0x5F], decode_ed_ld_ir, execute_ed_ld_ir),
    ([0x67, 0x6F], decode_ed_rrd_rld, execute_ed_rrd_rld),
    ([0xA0, 0xA8, 0xB0, 0xB8], decode_ed_block_transfer, execute_ed_block_transfer),
    ([0xA1, 0xA9, 0xB1, 0xB9], decode_ed_block_compare, execute_ed_block_compare),
    ([0xA2, 0xAA, 0xB2, 0xBA, 0xA3, 0xAB, 0xB3, 0xBB], decode_ed_block_io, execute_ed_block_io),
]

# DD/FDプレフィックスで意味が変わる（HL, H, L, (HL) を使う）命令
_INDEX_REGISTER_CODES = (0b100, 0b101, 0b110)

INDEXED_OPCODES = sorted(
    [0x09, 0x19, 0x29, 0x39, 0x21, 0x22, 0x23, 0x24, 0x25, 0x26, 0x2A, 0x2B, 0x2C, 0x2D, 0x2E,
     0x34, 0x35, 0x36, 0xE1, 0xE3, 0xE5, 0xE9, 0xF9]
    + [op for op in range(0x40, 0x80)
       if op != 0x76 and (((op >> 3) & 0b111) in _INDEX_REGISTER_CODES or (op & 0b111) in _INDEX_REGISTER_CODES)]
    + [op for op in range(0x80, 0xC0) if (op & 0b111) in _INDEX_REGISTER_CODES]
)


def _build_maps(instructions, key_prefix: int = 0):
    decode_map = {}
    execute_map = {}
    for opcodes, decoder, executor in instructions:
        for op in opcodes:
            decode_map[op] = decoder
            if executor is not None:
                execute_map[key_prefix | op] = executor
    return decode_map, execute_map


DECODE_MAP, _BASE_EXECUTE_MAP = _build_maps(BASE_INSTRUCTIONS)
CB_DECODE_MAP, _CB_EXECUTE_MAP = _build_maps(CB_INSTRUCTIONS, 0xCB00)
ED_DECODE_MAP, _ED_EXECUTE_MAP = _build_maps(ED_INSTRUCTIONS, 0xED00)

# @intent:responsibility DD/FD表を構築します。256個全てのオペコードに、インデックス形式・連続プレフィックス・DDCB/FDCB・フォールバックのいずれかを割り当てます。
def _build_index_decode_map(prefix: int):
    decode_map = {}
    for op in range(0x100):
        if op in INDEXED_OPCODES:
            decode_map[op] = partial(DECODE_MAP[op], prefix=prefix)
        elif op in (0xDD, 0xFD):
            decode_map[op] = partial(decode_index_repeat, prefix=prefix)
        elif op == 0xCB:
            decode_map[op] = partial(decode_index_cb_prefix, prefix=prefix)
        else:
            decode_map[op] = partial(decode_index_fallback, prefix=prefix)
    return decode_map


INDEX_DECODE_MAPS = {prefix: _build_index_decode_map(prefix) for prefix in (0xDD, 0xFD)}
INDEX_CB_DECODE_MAPS = {
    prefix: {op: partial(decode_index_cb, prefix=prefix) for op in range(0x100)}
    for prefix in (0xDD, 0xFD)
}

EXECUTE_MAP = {
    **_BASE_EXECUTE_MAP,
    **_CB_EXECUTE_MAP,
    **_ED_EXECUTE_MAP,
    # 実行関数はOperationのプレフィックスからIX/IYを判別するため、基本命令と共有します。
    **{(prefix << 8) | op: _BASE_EXECUTE_MAP[op] for prefix in (0xDD, 0xFD) for op in INDEXED_OPCODES},
    **{(prefix << 16) | 0xCB00 | op: execute_index_cb for prefix in (0xDD, 0xFD) for op in range(0x100)},
}
