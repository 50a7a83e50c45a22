import requests


class ProxyTester:
    """
    Sends HTTP requests through a running HostRelay proxy.

    Attributes:
    ----------
    proxy_address : str
        The proxy URL, e.g. ``http://127.0.0.1:8080``.
    timeout : float
        Seconds to wait for the proxied response.
    """

    def __init__(self, proxy_address, timeout=10.0):
        """
        Initializes the ProxyTester with the provided proxy address.

        Parameters:
        ----------
        proxy_address : str
            The address of the proxy server to be used for requests.
        timeout : float
            Seconds to wait for the proxied response.
        """
        self.proxy_address = proxy_address
        self.timeout = timeout
        self.session = requests.Session()
        # Ignore HTTP_PROXY / NO_PROXY from the environment
        self.session.trust_env = False
        self.session.proxies = {"http": proxy_address}

    def send_http(self, url):
        """
        Sends a GET for ``url`` through the proxy.

        Parameters:
        ----------
        url : str
            A plain ``http://`` URL.

        Returns:
        -------
        requests.Response
            The relayed response, whatever its status code.

        Raises:
        ------
        requests.RequestException
            The proxy closed the connection or did not answer in time.
        """
        return self.session.get(url, timeout=self.timeout)

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
