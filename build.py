# build.py
import PyInstaller.__main__
import os
import sys

# Streamlit + pandas import graphs are deep
sys.setrecursionlimit(5000)

MODULES = [
    "app.py", "views.py", "config.py", "database.py", "auth.py",
    "schema.py", "codes.py", "importer.py", "exporter.py", "services.py",
]

if __name__ == '__main__':
    args = [
        'run_app.py',
        '--name=Inventaris_Sekolah',
        '--onefile',
        '--clean',
    ]
    args += [f'--add-data={m}{os.pathsep}.' for m in MODULES]
    args += [f'--collect-all={pkg}' for pkg in
             ('streamlit', 'altair', 'pandas', 'plotly', 'openpyxl', 'xlrd', 'bcrypt', 'fpdf')]
    args += [
        # Streamlit reads its own and some dependency metadata at startup
        '--copy-metadata=streamlit',
        '--copy-metadata=tqdm',
        '--copy-metadata=requests',
        '--copy-metadata=packaging',
        '--exclude-module=pytest',
    ]
    PyInstaller.__main__.run(args)
