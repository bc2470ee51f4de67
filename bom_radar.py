#!/usr/bin/python
# -*- coding: utf-8 -*-
#
#  bom_radar.py - Fetch Bureau of Meteorology radar transparencies and the
#                 most recent radar sweeps over anonymous FTP, then build one
#                 looping radar GIF from them.
#
#  This program is free software: you can redistribute it and/or modify
#  it under the terms of the GNU General Public License as published by
#  the Free Software Foundation, either version 3 of the License, or
#  (at your option) any later version.
#
#  This program is distributed in the hope that it will be useful,
#  but WITHOUT ANY WARRANTY; without even the implied warranty of
#  MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
#  GNU General Public License for more details.
#
#  You should have received a copy of the GNU General Public License
#  along with this program. If not, see <http://www.gnu.org/licenses/>.
#
import argparse
import ftplib
import io
import logging
import os
import sys
from dataclasses import dataclass
from ftplib import FTP

import imagehash

from config import FTP_HOST
from config import FTP_PASSWD
from config import FTP_PORT
from config import FTP_TIMEOUT
from config import FTP_USER
from config import GIF_PATH
from config import LOG_PATH
from config import OVERLAY_DIRECTORY
from config import RADAR_PRODUCTS
from config import SWEEP_DIRECTORY
from config import TEMP_PATH
from radar_gif import Palette
from radar_gif import PalettedFrameBuilder
from radar_gif import RadarGifError
from radar_gif import SelectionError
from radar_gif import assemble_animation
from radar_gif import composite_layers
from radar_gif import decode_raster
from radar_gif import encode_png
from radar_gif import select_sweeps

logger = logging.getLogger()


class SessionError(RadarGifError):
    pass


class RetrievalError(RadarGifError):
    pass


class BuildError(RadarGifError):
    def __init__(self, stage, message):
        RadarGifError.__init__(self, '{stage}: {msg}'.format(stage=stage, msg=message))
        self.stage = stage


def setup_logging(verbose=False, log_path=LOG_PATH):
    log_formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(log_formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    logger.addHandler(console_handler)

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


@dataclass
class BuildOptions:
    verbose: bool = False
    stage_intermediates: bool = False
    temp_dir: str = TEMP_PATH
    drop_duplicate_sweeps: bool = False


class BomFtpSource:
    """Anonymous FTP session on the BOM public server"""
    def __init__(self, host=FTP_HOST, port=FTP_PORT, user=FTP_USER,
                 passwd=FTP_PASSWD, timeout=FTP_TIMEOUT, verbose=False):
        self.host = host
        self.port = port
        self.user = user
        self.passwd = passwd
        self.timeout = timeout
        self.verbose = verbose
        self.client = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def connect(self):
        logger.info('Connecting to {host}:{port}'.format(host=self.host, port=self.port))
        client = FTP()
        try:
            client.connect(self.host, self.port, timeout=self.timeout)
            client.login(self.user, self.passwd)
        except ftplib.all_errors as err:
            client.close()
            raise SessionError('could not log on to {host}: {err}'.format(
                host=self.host, err=err)) from err
        self.client = client

    def close(self):
        if self.client is None:
            return
        try:
            self.client.quit()
        except ftplib.all_errors:
            self.client.close()
        self.client = None

    def _require_client(self):
        if self.client is None:
            raise SessionError('the FTP client is not connected')
        return self.client

    def current_directory(self):
        client = self._require_client()
        try:
            current = client.pwd()
        except ftplib.all_errors as err:
            raise SessionError('could not get the current dir: {err}'.format(err=err)) from err
        logger.info('Currently in {d}'.format(d=current))
        if self.verbose:
            logger.info('Listing {d}: {names}'.format(d=current, names=self._name_list()))
        return current

    def change_directory(self, path):
        client = self._require_client()
        try:
            client.cwd(path)
        except ftplib.all_errors as err:
            raise SessionError('could not change to {d}: {err}'.format(d=path, err=err)) from err
        return self.current_directory()

    def _name_list(self):
        try:
            return self._require_client().nlst()
        except ftplib.error_perm as err:
            # Servers answer NLST on an empty directory with 550
            if str(err).startswith('550'):
                return []
            raise RetrievalError('could not list names: {err}'.format(err=err)) from err
        except ftplib.all_errors as err:
            raise RetrievalError('could not list names: {err}'.format(err=err)) from err

    def list_names(self, directory):
        self.change_directory(directory)
        return self._name_list()

    def fetch_bytes(self, name, directory=None):
        if directory is not None:
            self.change_directory(directory)
        client = self._require_client()
        buf = io.BytesIO()
        logger.info('Get {f}'.format(f=name))
        try:
            client.retrbinary('RETR {f}'.format(f=name), buf.write)
        except ftplib.all_errors as err:
            raise RetrievalError('error retrieving {f}: {err}'.format(f=name, err=err)) from err
        if self.verbose:
            logger.info('Read {n} bytes from {f}'.format(n=buf.tell(), f=name))
        return buf.getvalue()


class StagingSink:
    """Write intermediate images somewhere they can be inspected"""
    def __init__(self, dir_path):
        self.dir_path = dir_path

    def stage(self, label, data):
        try:
            assure_path_exists(self.dir_path)
            save_file = os.path.join(self.dir_path, label)
            with open(save_file, 'wb') as staged:
                staged.write(data)
        except OSError as err:
            logger.warning('Error writing temp file {f}: {err}'.format(f=label, err=err))
            return None
        logger.info('Saved {f}'.format(f=save_file))
        return save_file


def sweep_fingerprint(img, size=8):
    return str(imagehash.dhash(img, hash_size=size))


def build_animation(source, product, options=None):
    """
    Build one radar loop GIF for a product and return its bytes.

    Any failure aborts the whole build with a BuildError naming the
    stage and the asset that failed.
    """
    options = options or BuildOptions()
    sink = StagingSink(options.temp_dir) if options.stage_intermediates else None
    stage = 'overlays'

    try:
        layers = []
        for layer_name in product['overlay_layers']:
            layer_file = '{prod}.{layer}.png'.format(
                prod=product['overlay_product'], layer=layer_name)
            data = source.fetch_bytes(layer_file, OVERLAY_DIRECTORY)
            layers.append(decode_raster(data, layer_file))
            if sink:
                sink.stage('{layer}_image.png'.format(layer=layer_name), data)

        stage = 'base map'
        base = composite_layers(layers)
        if sink:
            sink.stage('base_image.png', encode_png(base))

        stage = 'sweep selection'
        names = source.list_names(SWEEP_DIRECTORY)
        sweeps = select_sweeps(names, product['sweep_product'], product['frames_max'])
        if options.verbose:
            logger.info('Relevant radar files - sorted: {f}'.format(f=sweeps))
        if not sweeps:
            raise SelectionError('no radar sweeps found for {prod} in {d}'.format(
                prod=product['sweep_product'], d=SWEEP_DIRECTORY))

        stage = 'frames'
        builder = PalettedFrameBuilder(base, Palette())
        frames = []
        previous_hash = None
        for sweep_file in sweeps:
            sweep = decode_raster(source.fetch_bytes(sweep_file), sweep_file)
            if options.drop_duplicate_sweeps:
                sweep_hash = sweep_fingerprint(sweep)
                if sweep_hash == previous_hash:
                    logger.info('Skipping duplicate sweep {f}'.format(f=sweep_file))
                    continue
                previous_hash = sweep_hash
            frames.append(builder.build(sweep, product['frame_delay'], len(frames)))

        stage = 'animation'
        gif_data = assemble_animation(frames, product['loop_count'])
    except RadarGifError as err:
        logger.error('Build of {prod} failed at {stage}: {err}'.format(
            prod=product['sweep_product'], stage=stage, err=err))
        raise BuildError(stage, str(err)) from err

    if sink:
        sink.stage('radar_loop.gif', gif_data)
    logger.info('Built {prod} loop: {n} frames, {b} bytes'.format(
        prod=product['sweep_product'], n=len(frames), b=len(gif_data)))
    return gif_data


def build_product_gif(product, options=None):
    """ Open an FTP session, build one product's GIF, close the session """
    options = options or BuildOptions()
    try:
        with BomFtpSource(verbose=options.verbose) as source:
            return build_animation(source, product, options)
    except SessionError as err:
        logger.error('FTP session for {prod} failed: {err}'.format(
            prod=product['sweep_product'], err=err))
        raise BuildError('session', str(err)) from err


def product_gif_name(product):
    return '{overlay}_{sweep}.gif'.format(
        overlay=product['overlay_product'], sweep=product['sweep_product'])


def assure_path_exists(dir_path):
    """ Create path if it doesn't exist """
    if not os.path.exists(dir_path):
        os.makedirs(dir_path)
        os.chmod(dir_path, 0o774)
    return dir_path


def delete_images(dir_path):
    """ Delete all GIFs and PNGs in dir_path """
    if not os.path.isdir(dir_path):
        return
    file_list = [f for f in os.listdir(dir_path) if f.endswith('.gif') or f.endswith('.png')]
    for f in file_list:
        file_del = os.path.join(dir_path, f)
        logger.info('Deleting {f}'.format(f=file_del))
        os.remove(file_del)


def parseargs(parse):
    parse.add_argument('-p', '--product', type=int, default=0,
                       help='Index of the radar product in config.py (Default: 0)')
    parse.add_argument('-o', '--output',
                       help='Where to write the GIF (Default: gifs/<overlay>_<sweep>.gif)')
    parse.add_argument('-v', '--verbose', action='store_true',
                       help='Log file listings and transfer sizes')
    parse.add_argument('-t', '--temp-files', action='store_true',
                       help='Save the overlays, base map and GIF to the temp directory')
    parse.add_argument('--dedupe', action='store_true',
                       help='Skip sweeps that look identical to the previous one')
    parse.add_argument('-d', '--delete', action='store_true',
                       help='Delete all images in the temp directory first')
    return parse.parse_args()


def main():
    parser = argparse.ArgumentParser(description='BOM Radar GIF')
    args = parseargs(parser)
    setup_logging(args.verbose)

    if args.product < 0 or args.product >= len(RADAR_PRODUCTS):
        parser.error('--product must be between 0 and {n}'.format(n=len(RADAR_PRODUCTS) - 1))
    product = RADAR_PRODUCTS[args.product]

    if args.delete:
        delete_images(TEMP_PATH)

    options = BuildOptions(
        verbose=args.verbose,
        stage_intermediates=args.temp_files,
        drop_duplicate_sweeps=args.dedupe)
    try:
        gif_data = build_product_gif(product, options)
    except BuildError as err:
        logger.error('Could not build the radar GIF: {err}'.format(err=err))
        sys.exit(1)

    gif_save = args.output or os.path.join(
        assure_path_exists(GIF_PATH), product_gif_name(product))
    with open(gif_save, 'wb') as gif_file:
        gif_file.write(gif_data)
    logger.info('Saved {f}'.format(f=gif_save))


if __name__ == '__main__':
    main()
