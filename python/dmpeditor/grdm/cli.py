"""
a command-line interface for browsing and updating the files of GRDM projects.  The
:py:func:`main` function provides the implementation of the ``grdmtree`` script.
"""
import argparse, asyncio, sys, os, re, logging
from argparse import ArgumentParser

import yaml

from dmpeditor.base import DMPEditorException
from dmpeditor.base import config
from dmpeditor.base.config import ConfigurationException
from dmpeditor.filetree import LazyFileTree, ERROR, LOADING, FOLDER
from .client import GRDMClient
from .exceptions import GRDMException, AuthenticationFailure
from . import token_settings_url

prog = re.sub(r'\.py$', '', os.path.basename(sys.argv[0]))

TOKEN_ENV_VAR = "GRDM_TOKEN"

class Failure(DMPEditorException):
    """
    an exception indicating that the command failed and should exit with a given code
    """
    def __init__(self, message: str, exitcode: int=1, cause: Exception=None):
        super(Failure, self).__init__(message, cause)
        self.exitcode = exitcode

def define_options(progname):
    """
    return an ArgumentParser instance that is configured with options
    for the command-line interface.
    """
    description = "Browse, download, and upload the files stored in GakuNin RDM (GRDM) projects"
    epilog = "The access token is taken from the -t option or, if not given, from the " \
             f"{TOKEN_ENV_VAR} environment variable."

    parser = ArgumentParser(progname, None, description, epilog)

    parser.add_argument('-c', '--config-file', type=str, dest='cfgfile', metavar='FILE',
                        help="a file (JSON or YAML) containing the configuration to use")
    parser.add_argument('-t', '--token', type=str, dest='token', metavar='TOKEN',
                        help="the GRDM personal access token to authenticate with")
    parser.add_argument('-D', '--dev', action='store_true', dest='dev',
                        help="connect to the GRDM development instance rather than production")
    parser.add_argument('-l', '--logfile', action='store', dest='logfile', type=str, metavar='FILE',
                        help="write messages that normally go to standard error to FILE as well.  "+
                             "If -q is also specified, the messages will only go to the logfile")
    parser.add_argument('-v', '--verbose', action='store_true', dest='verbose',
                        help="print more (debug) messages to standard error and/or the log file")
    parser.add_argument('-q', '--quiet', action='store_true', dest='quiet',
                        help="suppress all error and warning messages to standard error")

    subparsers = parser.add_subparsers(title="commands", dest='cmd', metavar='CMD')
    subparsers.required = True

    subparsers.add_parser('whoami', help="describe the user that the access token belongs to")

    p = subparsers.add_parser('projects', help="list the projects visible to the user")
    p.add_argument('-d', '--dmp', action='store_const', const='dmp', dest='which',
                   help="list only DMP projects")
    p.add_argument('-L', '--linkable', action='store_const', const='linkable', dest='which',
                   help="list only projects that can be linked to a DMP")

    p = subparsers.add_parser('ls', help="list the contents of a folder")
    p.add_argument('project', metavar='PROJECT', help="the project's ID")
    p.add_argument('path', metavar='PATH', nargs='?', default='',
                   help="the path to the folder (default: the root folder)")

    p = subparsers.add_parser('tree', help="display the complete file hierarchy of a project")
    p.add_argument('project', metavar='PROJECT', help="the project's ID")

    p = subparsers.add_parser('get', help="download a file")
    p.add_argument('project', metavar='PROJECT', help="the project's ID")
    p.add_argument('path', metavar='PATH', help="the path to the file")
    p.add_argument('-o', '--output', type=str, dest='output', metavar='FILE',
                   help="write the file's contents to FILE rather than standard out")

    p = subparsers.add_parser('put', help="upload a file, creating parent folders as needed")
    p.add_argument('project', metavar='PROJECT', help="the project's ID")
    p.add_argument('path', metavar='PATH', help="the destination path in the project")
    p.add_argument('srcfile', metavar='SRCFILE', help="the local file to upload")
    p.add_argument('-f', '--overwrite', action='store_true', dest='overwrite',
                   help="replace the file if it already exists")

    p = subparsers.add_parser('mkproject', help="create a new project")
    p.add_argument('name', metavar='NAME', help="the title of the new project")
    p.add_argument('-d', '--dmp', action='store_true', dest='dmp',
                   help="create a DMP project (the DMP project prefix is prepended to NAME)")

    return parser

def make_client(cfg, token):
    """
    create the GRDMClient the commands are executed with
    """
    return GRDMClient(cfg, token, logger=logging.getLogger(prog))

def main(progname, args, out=None):
    """
    execute the command given by the arguments
    """
    if out is None:
        out = sys.stdout
    parser = define_options(progname)
    opts = parser.parse_args(args)

    rootlog = logging.getLogger()
    level = (opts.verbose and logging.DEBUG) or logging.INFO
    if opts.logfile:
        # write messages to a log file
        fmt = "%(asctime)s " + progname + ".%(name)s %(levelname)s: %(message)s"
        hdlr = logging.FileHandler(opts.logfile)
        hdlr.setFormatter(logging.Formatter(fmt))
        hdlr.setLevel(logging.DEBUG)
        rootlog.addHandler(hdlr)
        rootlog.setLevel(level)

    # configure a default log handler
    if not opts.quiet:
        fmt = progname + ": %(levelname)s: %(message)s"
        hdlr = logging.StreamHandler(sys.stderr)
        hdlr.setFormatter(logging.Formatter(fmt))
        hdlr.setLevel(logging.WARNING if not opts.verbose else logging.DEBUG)
        rootlog.addHandler(hdlr)
        rootlog.setLevel(level)
    elif not rootlog.handlers:
        rootlog.addHandler(logging.NullHandler())

    cfg = {}
    if opts.cfgfile:
        try:
            cfg = read_config(opts.cfgfile)
        except EnvironmentError as ex:
            raise Failure("problem reading config file, {0}: {1}"
                          .format(opts.cfgfile, ex.strerror)) from ex
    if cfg.get('grdm'):
        cfg = cfg['grdm']
    if opts.dev:
        cfg = config.merge_config({'use_dev_env': True}, cfg)

    token = opts.token or os.environ.get(TOKEN_ENV_VAR) or cfg.get('token')
    if not token:
        raise Failure("No access token provided; use -t or set "+TOKEN_ENV_VAR+
                      " (tokens can be created at "+token_settings_url(cfg.get('web_base_url'))+")")

    try:
        client = make_client(cfg, token)
        try:
            asyncio.run(COMMANDS[opts.cmd](client, opts, out))
        finally:
            client.close()

    except ConfigurationException as ex:
        raise Failure(str(ex)) from ex
    except AuthenticationFailure as ex:
        raise Failure("Access token not accepted: "+str(ex), 2, ex) from ex
    except GRDMException as ex:
        raise Failure("GRDM request failed: "+str(ex), 2, ex) from ex

def read_config(filepath):
    """
    read the configuration from a file having the given filepath

    :except Failure:  if the contents contains syntax or format errors
    :except IOError:  if a failure occurs while opening or reading the file
    """
    try:
        return config.load_from_file(filepath)
    except (ValueError, yaml.YAMLError) as ex:
        raise Failure("Config parsing error: "+str(ex), 3, ex)

async def whoami(client, opts, out):
    user = await client.get_me()
    out.write(f"{user.full_name} ({user.id})\n")
    if user.email:
        out.write(f"  email:       {user.email}\n")
    if user.affiliation:
        out.write(f"  affiliation: {user.affiliation}\n")
    if user.orcid:
        out.write(f"  ORCID:       {user.orcid}\n")

async def projects(client, opts, out):
    if opts.which == 'dmp':
        projs = await client.list_dmp_projects()
    elif opts.which == 'linkable':
        projs = await client.linkable_projects()
    else:
        projs = await client.list_projects()
    for p in projs:
        out.write(f"{p.id}\t{p.title}\n")

async def ls(client, opts, out):
    if opts.path.strip('/'):
        folder = await client.paths.resolve(opts.project, opts.path)
        if not folder.is_folder:
            raise Failure(f"{opts.path}: not a folder")
        children = await client.paths.list_folder(folder)
    else:
        children = await client.list_children(opts.project)
    for c in children:
        size = "-" if c.size is None else str(c.size)
        name = c.name + ("/" if c.is_folder else "")
        out.write(f"{c.kind:6s} {size:>10s}  {name}\n")

async def tree(client, opts, out):
    project = await client.get_project_info(opts.project)
    ftree = LazyFileTree(client, logger=client.log.getChild("filetree"))
    ftree.set_linked_projects([project.id], [project])
    complete = await ftree.expand_all_under(project.id)

    def show(node, depth):
        label = node.label
        if node.type == FOLDER:
            label += "/"
        elif node.type == ERROR:
            label = f"[{label}: {ftree.failure(node.node_id)}]"
        elif node.type == LOADING:
            label = f"[{label}]"
        out.write("  " * depth + label + "\n")
        for child in ftree.children(node.node_id):
            show(child, depth + 1)

    show(ftree.get(project.id), 0)
    if not complete:
        raise Failure("Some folders could not be listed", 2)

async def get(client, opts, out):
    content, node = await client.read_file(opts.project, opts.path, binary=True)
    if opts.output:
        with open(opts.output, 'wb') as fd:
            fd.write(content)
    elif hasattr(out, 'buffer'):
        out.buffer.write(content)
    else:
        out.write(content.decode('utf-8'))

async def put(client, opts, out):
    try:
        with open(opts.srcfile, 'rb') as fd:
            content = fd.read()
    except EnvironmentError as ex:
        raise Failure(f"{opts.srcfile}: unable to read file: {ex.strerror}") from ex
    await client.write_file(opts.project, opts.path, content, opts.overwrite)

async def mkproject(client, opts, out):
    if opts.dmp:
        project = await client.create_dmp_project(opts.name)
    else:
        project = await client.create_project(opts.name)
    out.write(f"{project.id}\t{project.title}\n")

COMMANDS = {
    'whoami': whoami,
    'projects': projects,
    'ls': ls,
    'tree': tree,
    'get': get,
    'put': put,
    'mkproject': mkproject
}
