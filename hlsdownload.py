import sys

from hlsdownload import hlsdownload
from hlsdownload.hlsdownload import cmdl_parser

if __name__ == "__main__":
    try:
        hlsdownload._CMDL_OPTS = cmdl_parser.parse_args()
        hlsdownload.main()
    except KeyboardInterrupt:
        sys.exit(1)
    except Exception as error:
        sys.exit(hlsdownload.get_exit_code(error))
