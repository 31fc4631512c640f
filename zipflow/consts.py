from collections import namedtuple
import struct


# zip constants
ZIP32_VERSION = 20
ZIP32_LIMIT = 0xffffffff
ZIP32_MAX_ENTRIES = 0xffff
FNAME_MAX_LEN = 0xffff

# general purpose flags
DD_FLAG = 0x08      # crc and sizes follow the data in a descriptor
UTF8_FLAG = 0x800   # utf-8 filename encoding flag

# zip compression methods
COMPRESSION_DEFLATE = 8

# host system and attributes stored in central directory
SYSTEM_UNIX = 0x03
FILE_ATTRS = 0o100644 << 16

# file header
LF_STRUCT = struct.Struct(b"<4sHHHHHLLLHH")
LF_TUPLE = namedtuple("fileheader",
                      ("signature", "version", "flags",
                       "compression", "mod_time", "mod_date",
                       "crc", "comp_size", "uncomp_size",
                       "fname_len", "extra_len"))
LF_MAGIC = b'\x50\x4b\x03\x04'

# data descriptor (written without optional signature)
DD_STRUCT = struct.Struct(b"<LLL")
DD_TUPLE = namedtuple("filecrc",
                      ("crc", "comp_size", "uncomp_size"))

# central directory file header
CDLF_STRUCT = struct.Struct(b"<4sBBHHHHHLLLHHHHHLL")
CDLF_TUPLE = namedtuple("cdfileheader",
                        ("signature", "version", "system", "version_ndd", "flags",
                         "compression", "mod_time", "mod_date", "crc",
                         "comp_size", "uncomp_size", "fname_len", "extra_len",
                         "fcomm_len", "disk_start", "attrs_int", "attrs_ext", "offset"))
CDFH_MAGIC = b'\x50\x4b\x01\x02'

# end of central directory record
CD_END_STRUCT = struct.Struct(b"<4sHHHHLLH")
CD_END_TUPLE = namedtuple("cdend",
                          ("signature", "disk_num", "disk_cdstart", "disk_entries",
                           "total_entries", "cd_size", "cd_offset", "comment_len"))
CD_END_MAGIC = b'\x50\x4b\x05\x06'
