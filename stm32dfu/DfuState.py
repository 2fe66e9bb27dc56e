class DfuState:
    APP_IDLE = 0x00
    APP_DETACH = 0x01
    DFU_IDLE = 0x02
    DFU_DOWNLOAD_SYNC = 0x03
    DFU_DOWNLOAD_BUSY = 0x04
    DFU_DOWNLOAD_IDLE = 0x05
    DFU_MANIFEST_SYNC = 0x06
    DFU_MANIFEST = 0x07
    DFU_MANIFEST_WAIT_RESET = 0x08
    DFU_UPLOAD_IDLE = 0x09
    DFU_ERROR = 0x0a
    # ST vendor extensions
    DFU_UPLOAD_SYNC = 0x91
    DFU_UPLOAD_BUSY = 0x92

    _names = {
        APP_IDLE: 'appIDLE',
        APP_DETACH: 'appDETACH',
        DFU_IDLE: 'dfuIDLE',
        DFU_DOWNLOAD_SYNC: 'dfuDNLOAD-SYNC',
        DFU_DOWNLOAD_BUSY: 'dfuDNBUSY',
        DFU_DOWNLOAD_IDLE: 'dfuDNLOAD-IDLE',
        DFU_MANIFEST_SYNC: 'dfuMANIFEST-SYNC',
        DFU_MANIFEST: 'dfuMANIFEST',
        DFU_MANIFEST_WAIT_RESET: 'dfuMANIFEST-WAIT-RESET',
        DFU_UPLOAD_IDLE: 'dfuUPLOAD-IDLE',
        DFU_ERROR: 'dfuERROR',
        DFU_UPLOAD_SYNC: 'dfuUPLOAD-SYNC',
        DFU_UPLOAD_BUSY: 'dfuUPLOAD-BUSY',
    }

    @staticmethod
    def string(state):
        return DfuState._names.get(state, 'unknown state 0x%02x' % state)
