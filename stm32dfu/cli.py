import argparse
import logging
import sys

from .BlockTransfer import BLOCK_SIZES
from .DfuErrors import DfuError
from .Session import DfuSession
from .Settings import (BLANK_CHECK_ERASED, BLANK_CHECK_HASH, MAX_ALLOWED_RETRIES, OptionBytes,
                       Settings)
from .UsbTransport import ST_DFU_PRODUCT_ID, ST_VENDOR_ID, find_transport


def auto_int(x):
    return int(x, 0)


def list_dfu(session, args):
    transport = session.dfu.transport
    ident = transport.identity
    for name, alt in transport.alternates():
        print("Device: [%.4x:%.4x] Cfg: %d Intf: %d Alt: %d '%s'" % (
            ident.vendor_id, ident.product_id, alt.configuration,
            alt.bInterfaceNumber, alt.bAlternateSetting, name))
    block_size = BLOCK_SIZES.get(ident.bootloader_version)
    print("  bootloader version 0x%04x, transfer size %s" % (
        ident.bootloader_version, block_size if block_size else "unsupported"))
    mem = transport.get_mem_layout()
    if mem is not None:
        print("  %s: %d bytes, start address %.8x" % (mem['name'], mem['size'], mem['address']))
        for seg in mem['segments']:
            states = ["Readable" if seg['readable'] else "",
                      "Writable" if seg['writable'] else "",
                      "Erasable" if seg['erasable'] else ""]
            print("    %d pages of %d bytes at %.8x: %s" % (
                seg['pageno'], seg['pagesize'], seg['address'], ", ".join(s for s in states if s)))


def read(session, args):
    savefile, length = args.read[0], auto_int(args.read[1])
    data = session.read_image(length).result()
    with open(savefile, 'wb') as f:
        f.write(data)
    print('Done, read {0} bytes'.format(len(data)))


def run_action(session, args):
    if args.list:
        list_dfu(session, args)
        return True
    if args.read is not None:
        read(session, args)
        return True

    if args.program is not None:
        future = session.program_firmware()
    elif args.flash is not None:
        future = session.program()
    elif args.verify is not None:
        future = session.verify()
    elif args.erase is not None:
        future = session.mass_erase()
    elif args.option_bytes is not None:
        future = session.write_option_bytes(args.option_bytes)
    elif args.fast_operations:
        future = session.fast_operations()
    elif args.leave:
        future = session.leave_dfu_mode()
    return future.result() is not False


def build_parser():
    parser = argparse.ArgumentParser(description="DfuSe programmer for STM32 internal flash")

    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument('--list', action='store_true', help='Show the DfuSe interface and memory layout')
    action.add_argument('--program', metavar='FILE',
                        help='Erase, flash, verify and write option bytes from a DfuSe file')
    action.add_argument('--flash', metavar='FILE', help='Flash a DfuSe file without erase or verify')
    action.add_argument('--verify', metavar='FILE', help='Compare device flash with a DfuSe file')
    action.add_argument('--erase', nargs='?', const='', metavar='FILE',
                        help='Mass erase; with FILE, skip the erase if its region is already blank')
    action.add_argument('--read', nargs=2, metavar=('SAVEFILE', 'LENGTH'),
                        help='Read LENGTH bytes from the start of internal flash')
    action.add_argument('--option-bytes', type=OptionBytes.parse, metavar='FLAGS',
                        help='Write option bytes, e.g. RDP_OFF,WDG_SW,nRST_STOP,nRST_STDBY,BOR_1')
    action.add_argument('--fast-operations', action='store_true', help='Enable fast flash operations')
    action.add_argument('--leave', action='store_true', help='Leave DFU mode and start the application')

    devinfo = parser.add_argument_group('Device information')
    devinfo.add_argument('--vid', action='store', type=auto_int, default=ST_VENDOR_ID,
                         help='Device\'s USB vendor id, defaults to 0x0483')
    devinfo.add_argument('--pid', action='store', type=auto_int, default=ST_DFU_PRODUCT_ID,
                         help='Device\'s USB product id, defaults to 0xdf11')

    others = parser.add_argument_group('Other Options')
    others.add_argument('--retries', type=int, default=MAX_ALLOWED_RETRIES,
                        help='Erase and verify retries before giving up, defaults to %d' % MAX_ALLOWED_RETRIES)
    others.add_argument('--blank-check', choices=[BLANK_CHECK_HASH, BLANK_CHECK_ERASED],
                        default=BLANK_CHECK_HASH, help='How a blank device is recognised')
    others.add_argument('--verbose', '-v', action='store_true', help='Log protocol traffic')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        settings = Settings(vendor_id=args.vid, product_id=args.pid,
                            max_retries=args.retries, blank_check=args.blank_check)
    except ValueError as e:
        parser.error(str(e))

    session = DfuSession(settings=settings)
    session.add_listener(print)
    try:
        dfufile = args.program or args.flash or args.verify or args.erase
        if dfufile:
            session.load_file(dfufile)
        session.set_transport(find_transport(settings.vendor_id, settings.product_id))
        ok = run_action(session, args)
    except (DfuError, OSError, ValueError) as e:
        print(e, file=sys.stderr)
        return 1
    finally:
        session.close()
    return 0 if ok else 1


def run():
    sys.exit(main())
