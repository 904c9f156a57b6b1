# -*- coding: utf-8 -*-

import sys
import time

import numpy as np
from PIL import Image
import matplotlib.pyplot as plt

from permx import lattice_filter

image_name = sys.argv[1] if len(sys.argv) > 1 else "lenna.png"
output_name = sys.argv[2] if len(sys.argv) > 2 else "lenna_filtered.png"

theta_alpha = 5.
theta_beta = .25


def main():
    # - Load data
    im = Image.open(image_name).convert("RGB")
    im = np.array(im) / 255.
    h, w, n_channels = im.shape
    print("Image:", (h, w, n_channels))

    # - Filter the image with itself as reference, [1, h, w, 3]
    start = time.time()
    dst = lattice_filter(im[np.newaxis], im[np.newaxis], theta_alpha=theta_alpha, theta_beta=theta_beta)[0]
    print("Time:", time.time() - start)

    dst = np.clip(dst, 0., 1.)
    plt.imsave(output_name, dst)


if __name__ == "__main__":
    main()
