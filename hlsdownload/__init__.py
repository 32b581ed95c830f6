"""Module entry for hlsdownload."""

from . import hlsdownload


def execute(*args):
    """Pass arguments to be executed by hlsdownload."""

    args_list = [e.strip() for e in args]
    hlsdownload._CMDL_OPTS = hlsdownload.cmdl_parser.parse_args(args_list)
    hlsdownload.main()
