import os
from setuptools import setup, find_namespace_packages
from setuptools.command.build_py import build_py as _build

CLASSIFIERS = [
    'Operating System :: POSIX',
    'Operating System :: MacOS :: MacOS X',
    'Intended Audience :: Science/Research',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Programming Language :: Python :: 3.9',
    'Programming Language :: Python :: 3.10',
    'Programming Language :: Python :: 3.11',
    'Programming Language :: Python :: 3.12',
    'Topic :: Scientific/Engineering'
]

pkgdir = os.path.dirname(os.path.abspath(__file__))
pydir = os.path.join(pkgdir, 'python')

def get_version():
    out = "dev"
    versfile = os.path.join(pkgdir, 'VERSION')
    if os.path.exists(versfile):
        with open(versfile) as fd:
            parts = fd.readline().split()
        if len(parts) > 0:
            out = parts[-1]
    return out

def write_version_mod(version):
    basedir = os.path.join(pydir, 'dmpeditor')
    for pkg in [f for f in os.listdir(basedir) \
                  if not f.startswith('_') and not f.startswith('.')
                     and os.path.isdir(os.path.join(basedir, f))]:
        print("setting version for dmpeditor."+pkg)
        versmodf = os.path.join(basedir, pkg, "version.py")
        with open(versmodf, 'w') as fd:
            fd.write('"""')
            fd.write("""
An identification of the subsystem version.  Note that this module file gets
(over-) written by the build process.
""")
            fd.write('"""\n\n')
            fd.write('__version__ = "')
            fd.write(version)
            fd.write('"\n')

class build(_build):

    def run(self):
        write_version_mod(get_version())
        _build.run(self)

setup(name='dmpeditor',
      version=get_version(),
      description="dmpeditor: the GakuNin RDM client core of the DMP editor",
      package_dir={'': 'python'},
      packages=find_namespace_packages(where='python', include=['dmpeditor', 'dmpeditor.*']),
      scripts=[ 'scripts/grdmtree.py' ],
      python_requires='>=3.9',
      install_requires=[ 'requests', 'jsonschema', 'PyYAML' ],
      extras_require={ 'test': [ 'pytest' ] },
      cmdclass={'build_py': build},
      classifiers=CLASSIFIERS,
      zip_safe=False
)
