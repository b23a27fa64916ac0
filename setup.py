from setuptools import setup

__version__ = "1.0.0"
__author__ = "Maxime Lamothe-Brassard ( Refraction Point, Inc )"
__author_email__ = "maxime@refractionpoint.com"
__license__ = "Apache v2"
__copyright__ = "Copyright (c) 2020 Refraction Point, Inc"

setup( name = 'oauthbridge',
       version = __version__,
       description = 'Loopback OAuth callback listener for desktop applications',
       author = __author__,
       author_email = __author_email__,
       license = __license__,
       packages = [ 'oauthbridge' ],
       zip_safe = True,
       install_requires = [ 'requests', 'pyyaml', 'orjson', 'tabulate', 'termcolor', 'pygments', 'rich' ],
       extras_require = {
           'test': [ 'pytest' ],
       },
       long_description = 'Self-terminating loopback HTTP listener that brokers a browser-based Firebase sign-in for desktop applications.',
       entry_points = {
           'console_scripts': [
               'oauthbridge=oauthbridge.__main__:main',
           ],
       },
)
